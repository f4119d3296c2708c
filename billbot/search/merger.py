from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from billbot.models.results import RankedResult


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    accumulated: tuple[RankedResult, ...]
    new: tuple[RankedResult, ...]

    @property
    def new_count(self) -> int:
        return len(self.new)

    @property
    def total(self) -> int:
        return len(self.accumulated)

    def top_scores(self, k: int) -> list[float]:
        return [r.composite_score for r in self.accumulated[:k]]


def rank(results: Iterable[RankedResult]) -> list[RankedResult]:
    """Order by composite score desc, then most recent first, then key.

    Undated results sort after dated ones on a recency tie. Python's sort is
    stable, so the passes run from the least to the most significant key.
    """
    ordered = sorted(results, key=lambda r: r.key)
    ordered.sort(key=lambda r: r.published_on or "", reverse=True)
    ordered.sort(key=lambda r: r.composite_score, reverse=True)
    return ordered


class ResultMerger:
    """Accumulates results across iterations of one session."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._accumulated: list[RankedResult] = []

    def __len__(self) -> int:
        return len(self._accumulated)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    @property
    def accumulated(self) -> tuple[RankedResult, ...]:
        return tuple(self._accumulated)

    def merge(self, results: Iterable[RankedResult]) -> MergeOutcome:
        fresh: list[RankedResult] = []
        for result in results:
            if result.key in self._seen:
                continue
            self._seen.add(result.key)
            fresh.append(result)

        self._accumulated = rank([*self._accumulated, *fresh])
        return MergeOutcome(accumulated=tuple(self._accumulated), new=tuple(rank(fresh)))
