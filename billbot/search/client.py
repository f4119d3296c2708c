from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Protocol

from loguru import logger

from billbot.config import settings
from billbot.errors import RetrievalError
from billbot.models.results import (
    BillDetails,
    ComponentScores,
    ContentKind,
    ExecutiveActionDetails,
    RankedResult,
    ScoreWeights,
    SearchPage,
    SearchRequest,
)

MAX_LIMIT = 50


class SearchBackend(Protocol):
    async def fetch(self, request: SearchRequest) -> list[dict[str, Any]]: ...


def _optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def _optional_str(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


def _metadata(row: dict[str, Any]) -> dict[str, Any]:
    raw = row.get("metadata") or {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise TypeError("metadata must be an object")
    return raw


def parse_row(row: dict[str, Any], weights: ScoreWeights) -> RankedResult:
    """Build a RankedResult from one backend row. Raises on malformed rows."""
    kind = ContentKind(row["content_type"])
    content_id = str(row["content_id"])
    if not content_id:
        raise ValueError("empty content_id")
    meta = _metadata(row)

    if kind is ContentKind.BILL:
        details: BillDetails | ExecutiveActionDetails = BillDetails(
            bill_number=str(meta.get("bill_number") or ""),
            sponsor=_optional_str(meta.get("sponsor")),
            chamber=_optional_str(meta.get("chamber")),
            status=_optional_str(meta.get("status")),
            introduced_date=_optional_str(meta.get("introduced_date")),
            congress_number=_optional_int(meta.get("congress_number")),
            committee=_optional_str(meta.get("committee")),
            source_url=_optional_str(meta.get("source_url")),
        )
    else:
        details = ExecutiveActionDetails(
            action_type=str(meta.get("action_type") or ""),
            executive_order_number=_optional_int(meta.get("executive_order_number")),
            administration=_optional_str(meta.get("administration")),
            president_name=_optional_str(meta.get("president_name")),
            signed_date=_optional_str(meta.get("signed_date")),
            status=_optional_str(meta.get("status")),
            citation=_optional_str(meta.get("citation")),
            content_url=_optional_str(meta.get("content_url")),
        )

    scores = ComponentScores.clamped(
        row.get("semantic_score"),
        row.get("keyword_score"),
        row.get("freshness_score"),
        row.get("authority_score"),
    )
    return RankedResult(
        content_id=content_id,
        title=str(row.get("title") or "Untitled"),
        summary=str(row.get("summary") or ""),
        scores=scores,
        composite_score=weights.composite(scores),
        details=details,
    )


class RankedSearchClient:
    """Issues one ranked-search call per ``search`` and returns a scored page.

    Holds no session state; one instance is shared by every session.
    """

    def __init__(
        self,
        backend: SearchBackend | None = None,
        *,
        weights: ScoreWeights | None = None,
        timeout: float | None = None,
    ):
        self.weights = weights or ScoreWeights.from_settings(settings)
        if backend is None:
            from billbot.services.supabase import SupabaseSearchBackend

            backend = SupabaseSearchBackend(weights=self.weights)
        self.backend = backend
        self.timeout = timeout or settings.search_timeout_seconds

    @staticmethod
    def validate(request: SearchRequest) -> None:
        if not request.query.strip():
            raise RetrievalError("Search query is empty", reason="invalid_request")
        if not 1 <= request.limit <= MAX_LIMIT:
            raise RetrievalError(
                f"limit must be between 1 and {MAX_LIMIT} (got {request.limit})",
                reason="invalid_request",
            )
        if not 0.0 <= request.threshold <= 1.0:
            raise RetrievalError(
                f"threshold must be between 0 and 1 (got {request.threshold})",
                reason="invalid_threshold",
            )
        if not request.kinds:
            raise RetrievalError("At least one content kind is required", reason="invalid_request")

    async def search(self, request: SearchRequest) -> SearchPage:
        self.validate(request)
        t0 = time.monotonic()
        try:
            rows = await asyncio.wait_for(self.backend.fetch(request), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise RetrievalError(
                f"Search timed out after {self.timeout:.0f}s", reason="timeout"
            ) from exc
        except RetrievalError:
            raise
        except Exception as exc:
            logger.error(f"Ranked search backend failed: {exc}")
            raise RetrievalError("Search backend unavailable", reason="backend_unavailable") from exc

        if not isinstance(rows, list):
            raise RetrievalError("Search backend returned a non-list payload", reason="malformed_response")

        by_key: dict[str, RankedResult] = {}
        order: list[str] = []
        for row in rows:
            try:
                result = parse_row(row, self.weights)
            except (KeyError, TypeError, ValueError) as exc:
                raise RetrievalError(
                    f"Malformed search result: {exc}", reason="malformed_response"
                ) from exc
            if result.kind not in request.kinds:
                continue
            if not request.filters.matches(result):
                continue
            if result.composite_score < request.threshold:
                continue
            previous = by_key.get(result.key)
            if previous is None:
                order.append(result.key)
                by_key[result.key] = result
            elif result.composite_score > previous.composite_score:
                by_key[result.key] = result

        results = sorted((by_key[k] for k in order), key=lambda r: r.composite_score, reverse=True)
        results = results[: request.limit]
        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.debug(
            f"Ranked search '{request.query[:60]}' returned {len(rows)} rows, kept {len(results)} "
            f"in {duration_ms}ms"
        )
        return SearchPage(request=request, results=tuple(results), duration_ms=duration_ms)
