from __future__ import annotations

import time
from dataclasses import asdict
from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from billbot.api.deps import get_citation_builder, get_search_client
from billbot.errors import RetrievalError
from billbot.models.results import ContentKind, RankedResult, SearchFilters, SearchRequest
from billbot.models.session import utc_now_iso
from billbot.search.citations import CitationBuilder
from billbot.search.client import MAX_LIMIT, RankedSearchClient, parse_row
from billbot.services import supabase as db

router = APIRouter(prefix="/api/bills", tags=["bills"])

DEFAULT_STATUSES = [
    "introduced",
    "referred",
    "reported",
    "passed_house",
    "passed_senate",
    "enrolled",
    "signed",
]
CHAMBERS = ["house", "senate"]
HIDDEN_COLUMNS = ("embedding", "title_embedding", "summary_embedding", "content_embedding", "search_vector")

Chamber = Literal["house", "senate"]


def _bill_payload(result: RankedResult) -> dict[str, Any]:
    return {**result.to_dict(), **asdict(result.details)}


def _public_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k not in HIDDEN_COLUMNS}


def _lookup_result(row: dict[str, Any], weights) -> RankedResult:
    # A direct lookup is an exact match, so every component scores 1.
    return parse_row(
        {
            "content_type": ContentKind.BILL.value,
            "content_id": row["id"],
            "title": row.get("title"),
            "summary": row.get("summary"),
            "metadata": _public_row(row),
            "semantic_score": 1.0,
            "keyword_score": 1.0,
            "freshness_score": 1.0,
            "authority_score": 1.0,
        },
        weights,
    )


def _search_status(exc: RetrievalError) -> int:
    return 400 if exc.reason.startswith("invalid") else 503


@router.get("/search")
async def search_bills(
    q: str = Query(..., min_length=1, max_length=500),
    chamber: Chamber | None = None,
    status: list[str] | None = Query(default=None),
    congress: int | None = Query(default=None, ge=1),
    sponsor: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(default=10, ge=1, le=MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
    include_citations: bool = True,
    search_client: RankedSearchClient = Depends(get_search_client),
    citations: CitationBuilder = Depends(get_citation_builder),
):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Query must not be blank")
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")

    filters = SearchFilters(
        chamber=chamber,
        statuses=tuple(status or ()),
        congress=congress,
        sponsor=sponsor,
        date_from=date_from.isoformat() if date_from else None,
        date_to=date_to.isoformat() if date_to else None,
    )
    # One extra row tells whether another page exists.
    fetch = min(offset + limit + 1, MAX_LIMIT)
    request = SearchRequest(query=q.strip(), kinds=(ContentKind.BILL,), filters=filters, limit=fetch)

    t0 = time.monotonic()
    try:
        page = await search_client.search(request)
    except RetrievalError as exc:
        logger.warning(f"Bill search failed ({exc.reason}): {exc}")
        raise HTTPException(status_code=_search_status(exc), detail=str(exc)) from exc
    elapsed_ms = int((time.monotonic() - t0) * 1000)

    window = page.results[offset : offset + limit]
    searched_at = utc_now_iso()
    cited = (
        [
            citations.build(r, request.query, 1, offset + i, searched_at=searched_at).to_dict()
            for i, r in enumerate(window, 1)
        ]
        if include_citations
        else []
    )
    return {
        "data": {
            "bills": [_bill_payload(r) for r in window],
            "citations": cited,
            "metadata": {
                "total_results": len(window),
                "search_time": elapsed_ms,
                "search_type": "hybrid",
                "filters": filters.to_options(),
                "pagination": {
                    "limit": limit,
                    "offset": offset,
                    "has_more": len(page.results) > offset + limit,
                },
            },
        },
        "success": True,
    }


@router.get("/filters/options")
async def filter_options():
    try:
        values = await db.get_bill_filter_values()
    except Exception as exc:
        logger.warning(f"Filter options fell back to defaults: {exc}")
        return {
            "data": {"chambers": CHAMBERS, "statuses": DEFAULT_STATUSES, "sponsors": [], "congresses": []},
            "success": True,
            "source": "defaults",
        }
    statuses = values["statuses"] or DEFAULT_STATUSES
    return {
        "data": {
            "chambers": CHAMBERS,
            "statuses": statuses,
            "sponsors": values["sponsors"],
            "congresses": values["congresses"],
        },
        "success": True,
        "source": "database",
    }


async def _recent(chamber: str | None, congress: int | None, limit: int) -> dict[str, Any]:
    try:
        rows = await db.get_recent_bills(chamber=chamber, congress=congress, limit=limit)
    except Exception as exc:
        logger.error(f"Recent bills lookup failed: {exc}")
        raise HTTPException(status_code=503, detail="Bill database unavailable") from exc
    return {
        "data": {
            "bills": [_public_row(r) for r in rows],
            "metadata": {"chamber": chamber or "all", "congress": congress, "count": len(rows)},
        },
        "success": True,
    }


@router.get("/recent")
async def recent_bills(
    limit: int = Query(default=20, ge=1, le=100),
    congress: int | None = Query(default=None, ge=1),
):
    return await _recent(None, congress, limit)


@router.get("/recent/{chamber}")
async def recent_bills_by_chamber(
    chamber: Chamber,
    limit: int = Query(default=20, ge=1, le=100),
    congress: int | None = Query(default=None, ge=1),
):
    return await _recent(chamber, congress, limit)


@router.get("/{bill_id}")
async def get_bill(
    bill_id: str,
    search_client: RankedSearchClient = Depends(get_search_client),
    citations: CitationBuilder = Depends(get_citation_builder),
):
    try:
        row = await db.get_bill(bill_id)
    except Exception as exc:
        logger.error(f"Bill lookup {bill_id} failed: {exc}")
        raise HTTPException(status_code=503, detail="Bill database unavailable") from exc
    if row is None:
        raise HTTPException(status_code=404, detail=f"Bill {bill_id} not found")

    result = _lookup_result(row, search_client.weights)
    citation = citations.build(
        result, bill_id, 1, 1, searched_at=utc_now_iso(), search_method="direct_lookup"
    )
    return {
        "data": {"bill": _public_row(row), "citations": [citation.to_dict()]},
        "success": True,
    }
