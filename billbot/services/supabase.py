from __future__ import annotations

import asyncio
from typing import Any

from supabase import Client, create_client

from billbot.config import settings
from billbot.models.results import ContentKind, ScoreWeights, SearchRequest
from billbot.services.embeddings import QueryEmbedder


def get_client() -> Client:
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("Supabase not configured. Set SUPABASE_URL and SUPABASE_SERVICE_KEY in .env")
    return create_client(settings.supabase_url, settings.supabase_service_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


# The RPC only filters by content kind; the other filters are applied to the
# returned rows, so filtered searches ask for more rows than they keep.
FILTERED_OVERFETCH = 3
MAX_RPC_LIMIT = 50


def build_search_options(request: SearchRequest, weights: ScoreWeights) -> dict[str, Any]:
    """Translate a SearchRequest into the ``search_options`` JSON the RPC reads."""
    limit = request.limit
    if not request.filters.is_empty:
        limit = min(limit * FILTERED_OVERFETCH, MAX_RPC_LIMIT)
    options: dict[str, Any] = dict(weights.to_dict())
    options.update(
        limit=limit,
        semantic_threshold=request.threshold,
        include_bills=ContentKind.BILL in request.kinds,
        include_executive_actions=ContentKind.EXECUTIVE_ACTION in request.kinds,
    )
    return options


class SupabaseSearchBackend:
    """Ranked search through a PostgreSQL function exposed over Supabase RPC.

    The function signature is ``(query_text, query_embedding, search_options)``.
    """

    def __init__(
        self,
        rpc_name: str | None = None,
        weights: ScoreWeights | None = None,
        embedder: QueryEmbedder | None = None,
    ):
        self.rpc_name = rpc_name or settings.search_rpc_name
        self.weights = weights or ScoreWeights.from_settings(settings)
        self.embedder = embedder or QueryEmbedder()

    def rpc_params(self, request: SearchRequest, embedding: list[float]) -> dict[str, Any]:
        return {
            "query_text": request.query,
            "query_embedding": embedding,
            "search_options": build_search_options(request, self.weights),
        }

    async def fetch(self, request: SearchRequest) -> list[dict[str, Any]]:
        embedding = await self.embedder.embed(request.query)
        query = client().rpc(self.rpc_name, self.rpc_params(request, embedding))
        result = await asyncio.to_thread(query.execute)
        return list(result.data or [])


# --- Details ---


async def get_bill(bill_id: str) -> dict[str, Any] | None:
    query = client().table("bills").select("*")
    if bill_id.isdigit():
        query = query.eq("id", int(bill_id))
    else:
        query = query.eq("bill_number", bill_id)
    result = await asyncio.to_thread(query.limit(1).execute)
    return result.data[0] if result.data else None


async def get_executive_action(action_id: str) -> dict[str, Any] | None:
    query = client().table("executive_actions").select("*").eq("id", action_id).limit(1)
    result = await asyncio.to_thread(query.execute)
    return result.data[0] if result.data else None


async def get_recent_bills(
    *, chamber: str | None = None, congress: int | None = None, limit: int = 20
) -> list[dict[str, Any]]:
    query = client().table("bills").select("*").eq("is_active", True)
    if chamber:
        query = query.eq("chamber", chamber)
    if congress is not None:
        query = query.eq("congress_number", congress)
    query = query.order("introduced_date", desc=True).limit(limit)
    result = await asyncio.to_thread(query.execute)
    return list(result.data or [])


async def get_bill_filter_values(sample: int = 1000) -> dict[str, list[Any]]:
    """Distinct sponsors, congresses and statuses among the most recent bills."""
    query = (
        client()
        .table("bills")
        .select("sponsor, congress_number, status")
        .order("introduced_date", desc=True)
        .limit(sample)
    )
    result = await asyncio.to_thread(query.execute)
    rows = result.data or []
    return {
        "sponsors": sorted({r["sponsor"] for r in rows if r.get("sponsor")}),
        "congresses": sorted({r["congress_number"] for r in rows if r.get("congress_number")}, reverse=True),
        "statuses": sorted({r["status"] for r in rows if r.get("status")}),
    }


async def ping() -> None:
    """Cheapest round trip that proves the database answers."""
    query = client().table("bills").select("id").limit(1)
    await asyncio.to_thread(query.execute)
