from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from billbot.models.results import ContentKind, SearchRequest


class CompletionReason(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    SUFFICIENT_RESULTS = "sufficient_results"
    NO_NEW_RESULTS = "no_new_results"
    ERROR = "error"
    USER_ABORT = "user_abort"


class RefinementStrategy(str, Enum):
    INITIAL = "initial"
    EXPAND_TERMS = "expand_terms"
    NARROW_FOCUS = "narrow_focus"
    CHANGE_TIMEFRAME = "change_timeframe"
    ADJUST_FILTERS = "adjust_filters"
    BROADEN_SCOPE = "broaden_scope"
    DEEPEN_SEARCH = "deepen_search"


class ToolCallStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class SearchIteration:
    index: int
    request: SearchRequest
    strategy: RefinementStrategy
    result_count: int
    new_count: int
    cumulative_count: int
    duration_ms: int
    started_at: str
    failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.index,
            "query": self.request.query,
            "request": self.request.describe(),
            "strategy": self.strategy.value,
            "result_count": self.result_count,
            "new_count": self.new_count,
            "cumulative_count": self.cumulative_count,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at,
            "failed": self.failed,
        }


@dataclass
class SearchSession:
    session_id: str
    original_query: str
    iterations: list[SearchIteration] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now_iso)
    ended_at: str | None = None
    completion_reason: CompletionReason | None = None

    @property
    def sealed(self) -> bool:
        return self.ended_at is not None

    @property
    def total_results(self) -> int:
        return self.iterations[-1].cumulative_count if self.iterations else 0

    def record(self, iteration: SearchIteration) -> None:
        if self.sealed:
            raise RuntimeError(f"Session {self.session_id} is sealed")
        expected = len(self.iterations) + 1
        if iteration.index != expected:
            raise ValueError(f"Expected iteration {expected}, got {iteration.index}")
        self.iterations.append(iteration)

    def seal(self, reason: CompletionReason) -> None:
        if self.sealed:
            return
        self.completion_reason = reason
        self.ended_at = utc_now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "original_query": self.original_query,
            "iterations": [i.to_dict() for i in self.iterations],
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "total_results": self.total_results,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
        }


@dataclass
class ToolCallRecord:
    id: str
    name: str
    arguments: dict[str, Any]
    status: ToolCallStatus = ToolCallStatus.STARTED
    result_summary: str | None = None
    error: str | None = None
    duration_ms: int | None = None
    _started: float = field(default_factory=time.monotonic, repr=False)

    @property
    def finalized(self) -> bool:
        return self.status is not ToolCallStatus.STARTED

    def _finalize(self, status: ToolCallStatus) -> None:
        if self.finalized:
            raise RuntimeError(f"Tool call {self.id} already finalized as {self.status.value}")
        self.status = status
        self.duration_ms = int((time.monotonic() - self._started) * 1000)

    def complete(self, summary: str) -> None:
        self._finalize(ToolCallStatus.COMPLETED)
        self.result_summary = summary

    def fail(self, error: str) -> None:
        self._finalize(ToolCallStatus.FAILED)
        self.error = error


@dataclass(frozen=True, slots=True)
class Citation:
    id: str
    kind: ContentKind
    title: str
    url: str
    relevance_score: float
    excerpt: str
    metadata: tuple[tuple[str, Any], ...]
    source: tuple[tuple[str, Any], ...]
    search_context: tuple[tuple[str, Any], ...]
    relevance_indicators: tuple[tuple[str, Any], ...]

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "url": self.url,
            "relevance_score": self.relevance_score,
            "excerpt": self.excerpt,
            **dict(self.metadata),
            "source": dict(self.source),
            "search_context": dict(self.search_context),
            "relevance_indicators": dict(self.relevance_indicators),
        }
