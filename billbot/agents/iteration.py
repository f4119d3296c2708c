"""Stopping and refinement decisions for the iterative retrieval loop.

After every search round the controller looks at what the round added and
either stops (with a CompletionReason) or picks the refinement strategy that
shapes the next search request.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Sequence

from billbot.config import settings
from billbot.errors import RetrievalError
from billbot.models.results import ALL_KINDS, SearchFilters, SearchRequest
from billbot.models.session import CompletionReason, RefinementStrategy

STRATEGY_ORDER: tuple[RefinementStrategy, ...] = (
    RefinementStrategy.EXPAND_TERMS,
    RefinementStrategy.BROADEN_SCOPE,
    RefinementStrategy.ADJUST_FILTERS,
    RefinementStrategy.CHANGE_TIMEFRAME,
    RefinementStrategy.DEEPEN_SEARCH,
)
MAX_ATTEMPTS_PER_STRATEGY = 2

SYNONYMS: dict[str, tuple[str, ...]] = {
    "climate": ("environmental", "emissions"),
    "adaptation": ("resilience", "mitigation"),
    "healthcare": ("health", "medicare", "medicaid"),
    "health": ("healthcare", "medical"),
    "immigration": ("border", "visa", "asylum"),
    "tax": ("taxation", "revenue"),
    "taxes": ("taxation", "revenue"),
    "education": ("schools", "students"),
    "energy": ("renewable", "electricity"),
    "gun": ("firearm", "firearms"),
    "guns": ("firearm", "firearms"),
    "veterans": ("military", "service members"),
    "housing": ("homeownership", "rental"),
    "infrastructure": ("transportation", "highways"),
    "privacy": ("data protection", "surveillance"),
    "security": ("defense", "homeland"),
    "trade": ("tariffs", "imports"),
    "budget": ("appropriations", "spending"),
    "agriculture": ("farm", "farmers"),
    "crime": ("criminal justice", "law enforcement"),
}
FALLBACK_EXPANSION = ("legislation", "policy")


class ControllerState(str, Enum):
    RUNNING = "running"
    REFINING = "refining"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class Decision:
    state: ControllerState
    reason: CompletionReason | None = None
    next_strategy: RefinementStrategy | None = None

    @property
    def done(self) -> bool:
        return self.state is ControllerState.DONE


def _shift_years(value: str, years: int) -> str | None:
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return None
    try:
        return parsed.replace(year=parsed.year - years).isoformat()
    except ValueError:  # Feb 29
        return parsed.replace(year=parsed.year - years, day=28).isoformat()


def expand_terms(query: str) -> str:
    words = query.split()
    lowered = {w.lower() for w in words}
    additions: list[str] = []
    for word in words:
        for synonym in SYNONYMS.get(word.lower().strip(",.;:"), ()):
            if synonym not in lowered and synonym not in additions:
                additions.append(synonym)
    if not additions:
        additions = [w for w in FALLBACK_EXPANSION if w not in lowered]
    return " ".join([*words, *additions])


def apply_refinement(
    request: SearchRequest,
    strategy: RefinementStrategy,
    *,
    widen_years: int = 4,
) -> SearchRequest:
    """Return the next request reshaped by ``strategy``."""
    if strategy is RefinementStrategy.EXPAND_TERMS:
        return replace(request, query=expand_terms(request.query))
    if strategy is RefinementStrategy.BROADEN_SCOPE:
        return replace(request, kinds=ALL_KINDS, threshold=round(max(request.threshold - 0.1, 0.0), 4))
    if strategy is RefinementStrategy.ADJUST_FILTERS:
        kept = SearchFilters(date_from=request.filters.date_from, date_to=request.filters.date_to)
        return replace(request, filters=kept)
    if strategy is RefinementStrategy.CHANGE_TIMEFRAME:
        filters = request.filters
        date_from = _shift_years(filters.date_from, widen_years) if filters.date_from else None
        return replace(request, filters=replace(filters, date_from=date_from, date_to=None))
    if strategy is RefinementStrategy.DEEPEN_SEARCH:
        return replace(
            request,
            limit=min(request.limit * 2, 50),
            threshold=round(max(request.threshold - 0.15, 0.0), 4),
        )
    if strategy is RefinementStrategy.NARROW_FOCUS:
        return replace(
            request,
            limit=max(request.limit // 2, 1),
            threshold=round(min(request.threshold + 0.1, 1.0), 4),
        )
    return request


class IterationController:
    def __init__(
        self,
        *,
        max_iterations: int | None = None,
        target_count: int | None = None,
        sufficient_threshold: float | None = None,
        top_k: int | None = None,
        widen_years: int | None = None,
    ):
        self.max_iterations = max_iterations or settings.max_iterations
        self.target_count = target_count or settings.target_result_count
        self.sufficient_threshold = (
            sufficient_threshold if sufficient_threshold is not None else settings.sufficient_score_threshold
        )
        self.top_k = top_k or settings.sufficient_top_k
        self.widen_years = widen_years or settings.timeframe_widen_years
        self.state = ControllerState.RUNNING
        self.reason: CompletionReason | None = None
        self.iteration = 0
        self.empty_streak = 0
        self.pending: RefinementStrategy = RefinementStrategy.INITIAL
        self.attempts: Counter[RefinementStrategy] = Counter()

    @property
    def done(self) -> bool:
        return self.state is ControllerState.DONE

    @property
    def next_iteration(self) -> int:
        return self.iteration + 1

    def refine(self, request: SearchRequest) -> tuple[SearchRequest, RefinementStrategy]:
        """Apply the pending strategy to the next request and mark it attempted."""
        if self.done:
            raise RuntimeError("Retrieval loop already finished")
        strategy = self.pending
        if strategy is RefinementStrategy.INITIAL:
            return request, strategy
        self.attempts[strategy] += 1
        return apply_refinement(request, strategy, widen_years=self.widen_years), strategy

    def next_strategy(self) -> RefinementStrategy | None:
        for strategy in STRATEGY_ORDER:
            if self.attempts[strategy] < MAX_ATTEMPTS_PER_STRATEGY:
                return strategy
        return None

    def _finish(self, reason: CompletionReason) -> Decision:
        self.state = ControllerState.DONE
        self.reason = reason
        return Decision(ControllerState.DONE, reason)

    def evaluate(self, iteration: int, new_count: int, accumulated_scores: Sequence[float]) -> Decision:
        """Decide after one merge step. ``accumulated_scores`` is ordered best first."""
        if self.done:
            return Decision(ControllerState.DONE, self.reason)
        if iteration != self.iteration + 1:
            raise ValueError(f"Expected iteration {self.iteration + 1}, got {iteration}")
        self.iteration = iteration
        self.empty_streak = self.empty_streak + 1 if new_count == 0 else 0

        # One empty round still gets a refinement; two in a row end the loop.
        if new_count == 0 and iteration >= 2 and self.empty_streak >= 2:
            return self._finish(CompletionReason.NO_NEW_RESULTS)

        top = list(accumulated_scores[: self.top_k])
        if (
            len(accumulated_scores) >= self.target_count
            and top
            and all(score > self.sufficient_threshold for score in top)
        ):
            return self._finish(CompletionReason.SUFFICIENT_RESULTS)

        if iteration >= self.max_iterations:
            return self._finish(CompletionReason.MAX_ITERATIONS)

        strategy = self.next_strategy()
        if strategy is None:
            return self._finish(CompletionReason.MAX_ITERATIONS)
        self.state = ControllerState.REFINING
        self.pending = strategy
        return Decision(ControllerState.REFINING, next_strategy=strategy)

    def fail(self, iteration: int, error: RetrievalError, accumulated_scores: Sequence[float]) -> Decision:
        """A failed round. Non-recoverable failures end the loop; others count as empty rounds."""
        if not error.recoverable:
            self.iteration = max(self.iteration, iteration)
            return self._finish(CompletionReason.ERROR)
        return self.evaluate(iteration, 0, accumulated_scores)

    def finish(self, reason: CompletionReason) -> Decision:
        """Force DONE with ``reason``; a controller that already stopped keeps its reason."""
        if self.done:
            return Decision(ControllerState.DONE, self.reason)
        return self._finish(reason)

    def abort(self) -> Decision:
        return self._finish(CompletionReason.USER_ABORT)
