from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

WEIGHT_TOLERANCE = 0.01


class ContentKind(str, Enum):
    BILL = "bill"
    EXECUTIVE_ACTION = "executive_action"


ALL_KINDS: tuple[ContentKind, ...] = (ContentKind.BILL, ContentKind.EXECUTIVE_ACTION)


def _clamp(value: Any) -> float:
    try:
        number = float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return min(max(number, 0.0), 1.0)


@dataclass(frozen=True, slots=True)
class ComponentScores:
    semantic: float = 0.0
    keyword: float = 0.0
    freshness: float = 0.0
    authority: float = 0.0

    @classmethod
    def clamped(cls, semantic: Any, keyword: Any, freshness: Any, authority: Any) -> "ComponentScores":
        return cls(
            semantic=_clamp(semantic),
            keyword=_clamp(keyword),
            freshness=_clamp(freshness),
            authority=_clamp(authority),
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "semantic": self.semantic,
            "keyword": self.keyword,
            "freshness": self.freshness,
            "authority": self.authority,
        }


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """Fixed weights for the composite relevance score."""

    semantic: float = 0.4
    keyword: float = 0.3
    freshness: float = 0.2
    authority: float = 0.1

    def __post_init__(self) -> None:
        if min(self.semantic, self.keyword, self.freshness, self.authority) < 0:
            raise ValueError("Score weights must be non-negative")
        if abs(self.total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Score weights must sum to 1.0 (got {self.total:.3f})")

    @property
    def total(self) -> float:
        return self.semantic + self.keyword + self.freshness + self.authority

    @classmethod
    def from_settings(cls, settings: Any) -> "ScoreWeights":
        return cls(
            semantic=settings.semantic_weight,
            keyword=settings.keyword_weight,
            freshness=settings.freshness_weight,
            authority=settings.authority_weight,
        )

    def composite(self, scores: ComponentScores) -> float:
        return (
            scores.semantic * self.semantic
            + scores.keyword * self.keyword
            + scores.freshness * self.freshness
            + scores.authority * self.authority
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "semantic_weight": self.semantic,
            "keyword_weight": self.keyword,
            "freshness_weight": self.freshness,
            "authority_weight": self.authority,
        }


@dataclass(frozen=True, slots=True)
class BillDetails:
    kind: ClassVar[ContentKind] = ContentKind.BILL

    bill_number: str = ""
    sponsor: str | None = None
    chamber: str | None = None
    status: str | None = None
    introduced_date: str | None = None
    congress_number: int | None = None
    committee: str | None = None
    source_url: str | None = None

    @property
    def primary_date(self) -> str | None:
        return self.introduced_date


@dataclass(frozen=True, slots=True)
class ExecutiveActionDetails:
    kind: ClassVar[ContentKind] = ContentKind.EXECUTIVE_ACTION

    action_type: str = ""
    executive_order_number: int | None = None
    administration: str | None = None
    president_name: str | None = None
    signed_date: str | None = None
    status: str | None = None
    citation: str | None = None
    content_url: str | None = None

    @property
    def primary_date(self) -> str | None:
        return self.signed_date


ContentDetails = BillDetails | ExecutiveActionDetails


@dataclass(frozen=True, slots=True)
class RankedResult:
    """One scored candidate; the details variant decides the content kind."""

    content_id: str
    title: str
    summary: str
    scores: ComponentScores
    composite_score: float
    details: ContentDetails

    @property
    def kind(self) -> ContentKind:
        return self.details.kind

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.content_id}"

    @property
    def published_on(self) -> str | None:
        return self.details.primary_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.content_id,
            "kind": self.kind.value,
            "title": self.title,
            "summary": self.summary,
            "scores": self.scores.to_dict(),
            "composite_score": round(self.composite_score, 4),
            "published_on": self.published_on,
        }


@dataclass(frozen=True, slots=True)
class SearchFilters:
    chamber: str | None = None
    statuses: tuple[str, ...] = ()
    congress: int | None = None
    sponsor: str | None = None
    action_type: str | None = None
    administration: str | None = None
    date_from: str | None = None
    date_to: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.to_options()

    def matches(self, result: RankedResult) -> bool:
        """Whether ``result`` passes these filters.

        A filter on a field the result's kind does not carry (chamber on an
        executive action, administration on a bill) does not exclude it.
        Date bounds exclude undated results.
        """
        details = result.details
        if self.statuses and (details.status or "").lower() not in {s.lower() for s in self.statuses}:
            return False
        if isinstance(details, BillDetails):
            if self.chamber and (details.chamber or "").lower() != self.chamber.lower():
                return False
            if self.congress is not None and details.congress_number != self.congress:
                return False
            if self.sponsor and self.sponsor.lower() not in (details.sponsor or "").lower():
                return False
        else:
            if self.action_type and details.action_type.lower() != self.action_type.lower():
                return False
            if self.administration:
                needle = self.administration.lower()
                names = f"{details.administration or ''} {details.president_name or ''}".lower()
                if needle not in names:
                    return False
        if self.date_from or self.date_to:
            published = (result.published_on or "")[:10]
            if not published:
                return False
            if self.date_from and published < self.date_from:
                return False
            if self.date_to and published > self.date_to:
                return False
        return True

    def to_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.chamber:
            options["chamber"] = self.chamber
        if self.statuses:
            options["status"] = list(self.statuses)
        if self.congress is not None:
            options["congress"] = self.congress
        if self.sponsor:
            options["sponsor"] = self.sponsor
        if self.action_type:
            options["action_type"] = self.action_type
        if self.administration:
            options["administration"] = self.administration
        if self.date_from:
            options["date_from"] = self.date_from
        if self.date_to:
            options["date_to"] = self.date_to
        return options


@dataclass(frozen=True, slots=True)
class SearchRequest:
    query: str
    kinds: tuple[ContentKind, ...] = ALL_KINDS
    filters: SearchFilters = field(default_factory=SearchFilters)
    limit: int = 10
    threshold: float = 0.3

    def describe(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "kinds": [k.value for k in self.kinds],
            "filters": self.filters.to_options(),
            "limit": self.limit,
            "threshold": self.threshold,
        }


@dataclass(frozen=True, slots=True)
class SearchPage:
    request: SearchRequest
    results: tuple[RankedResult, ...]
    duration_ms: int = 0

    def __len__(self) -> int:
        return len(self.results)
