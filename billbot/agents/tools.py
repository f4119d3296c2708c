"""Tools the model may call during a chat session."""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Awaitable, Callable, Sequence

from billbot.config import settings
from billbot.errors import ValidationError
from billbot.models.results import (
    ALL_KINDS,
    ContentKind,
    RankedResult,
    SearchFilters,
    SearchRequest,
)
from billbot.services import supabase

_FILTER_PROPERTIES: dict[str, Any] = {
    "query": {
        "type": "string",
        "description": "Search text. Use specific policy terms, bill titles or topics.",
    },
    "chamber": {
        "type": "string",
        "enum": ["house", "senate"],
        "description": "Only bills from this chamber.",
    },
    "status": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Bill or action statuses, e.g. introduced, passed_house, signed, active.",
    },
    "congress": {"type": "integer", "description": "Congress number, e.g. 118."},
    "sponsor": {"type": "string", "description": "Sponsor name (partial match)."},
    "date_from": {"type": "string", "description": "Earliest date, YYYY-MM-DD."},
    "date_to": {"type": "string", "description": "Latest date, YYYY-MM-DD."},
    "limit": {
        "type": "integer",
        "description": "Maximum results to return (1-50).",
        "default": 10,
    },
    "threshold": {
        "type": "number",
        "description": "Minimum relevance score between 0 and 1.",
    },
}

_ACTION_PROPERTIES: dict[str, Any] = {
    "action_type": {
        "type": "string",
        "enum": [
            "executive_order",
            "presidential_memorandum",
            "proclamation",
            "national_security_directive",
            "presidential_directive",
        ],
        "description": "Kind of executive action.",
    },
    "administration": {"type": "string", "description": "Administration, e.g. Biden or Trump."},
}


def _schema(*groups: dict[str, Any], exclude: Sequence[str] = ()) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    for group in groups:
        properties.update({k: v for k, v in group.items() if k not in exclude})
    return {"type": "object", "properties": properties, "required": ["query"]}


TOOLS: list[dict[str, Any]] = [
    {
        "name": "search_legislation",
        "description": (
            "Ranked search across congressional bills and presidential executive actions. "
            "Call it again with refined terms when results are thin."
        ),
        "input_schema": _schema(_FILTER_PROPERTIES, _ACTION_PROPERTIES),
    },
    {
        "name": "search_bills",
        "description": "Ranked search over congressional bills only.",
        "input_schema": _schema(_FILTER_PROPERTIES),
    },
    {
        "name": "search_executive_actions",
        "description": "Ranked search over executive orders, memoranda and proclamations only.",
        "input_schema": _schema(_FILTER_PROPERTIES, _ACTION_PROPERTIES, exclude=("chamber", "congress", "sponsor")),
    },
    {
        "name": "get_bill_details",
        "description": "Full record of one bill by id or bill number (e.g. 'HR 1234').",
        "input_schema": {
            "type": "object",
            "properties": {"bill_id": {"type": "string", "description": "Bill id or bill number."}},
            "required": ["bill_id"],
        },
    },
    {
        "name": "get_executive_action_details",
        "description": "Full record of one executive action by id.",
        "input_schema": {
            "type": "object",
            "properties": {"action_id": {"type": "string", "description": "Executive action id."}},
            "required": ["action_id"],
        },
    },
]

SEARCH_TOOL_KINDS: dict[str, tuple[ContentKind, ...]] = {
    "search_legislation": ALL_KINDS,
    "search_bills": (ContentKind.BILL,),
    "search_executive_actions": (ContentKind.EXECUTIVE_ACTION,),
}


def is_search_tool(name: str) -> bool:
    return name in SEARCH_TOOL_KINDS


def search_type(kinds: Sequence[ContentKind]) -> str:
    if set(kinds) == set(ALL_KINDS):
        return "all"
    return ",".join(k.value for k in kinds)


def _as_str(arguments: dict[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value in (None, ""):
        return None
    return str(value).strip() or None


def _as_date(arguments: dict[str, Any], key: str) -> str | None:
    value = _as_str(arguments, key)
    if value is None:
        return None
    return date.fromisoformat(value[:10]).isoformat()


def parse_search_arguments(
    name: str,
    arguments: dict[str, Any],
    *,
    defaults: SearchFilters | None = None,
) -> SearchRequest:
    """Build a SearchRequest from model-supplied tool arguments.

    Filters given by the caller's chat options fill in whatever the model left out.
    """
    if name not in SEARCH_TOOL_KINDS:
        raise ValidationError(f"Unknown search tool: {name}", field="name")
    query = _as_str(arguments, "query")
    if not query:
        raise ValidationError("query is required", field="query")

    defaults = defaults or SearchFilters()
    statuses = arguments.get("status")
    if isinstance(statuses, str):
        statuses = [statuses]
    if statuses is not None and not (
        isinstance(statuses, list) and all(isinstance(s, str) for s in statuses)
    ):
        raise ValidationError("status must be a string or a list of strings", field="status")
    statuses = tuple(s.strip() for s in statuses if s.strip()) if statuses else ()
    try:
        congress = int(arguments["congress"]) if arguments.get("congress") not in (None, "") else defaults.congress
        limit = int(arguments.get("limit") or settings.search_default_limit)
        threshold = float(
            arguments["threshold"] if arguments.get("threshold") is not None else settings.search_default_threshold
        )
        date_from = _as_date(arguments, "date_from") or defaults.date_from
        date_to = _as_date(arguments, "date_to") or defaults.date_to
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid search arguments: {exc}") from exc

    filters = SearchFilters(
        chamber=_as_str(arguments, "chamber") or defaults.chamber,
        statuses=statuses or defaults.statuses,
        congress=congress,
        sponsor=_as_str(arguments, "sponsor") or defaults.sponsor,
        action_type=_as_str(arguments, "action_type") or defaults.action_type,
        administration=_as_str(arguments, "administration") or defaults.administration,
        date_from=date_from,
        date_to=date_to,
    )
    return SearchRequest(
        query=query,
        kinds=SEARCH_TOOL_KINDS[name],
        filters=filters,
        limit=min(max(limit, 1), 50),
        threshold=min(max(threshold, 0.0), 1.0),
    )


def _result_line(result: RankedResult) -> dict[str, Any]:
    item = result.to_dict()
    item["summary"] = result.summary[:300]
    details = result.details
    if result.kind is ContentKind.BILL:
        item["bill_number"] = details.bill_number
        item["status"] = details.status
        item["sponsor"] = details.sponsor
    else:
        item["executive_order_number"] = details.executive_order_number
        item["action_type"] = details.action_type
        item["status"] = details.status
    return item


def summarize_results(results: Sequence[RankedResult], *, new_count: int, total: int) -> str:
    """Tool result text handed back to the model for a search round."""
    payload = {
        "result_count": len(results),
        "new_results": new_count,
        "total_distinct_results": total,
        "results": [_result_line(r) for r in results],
    }
    return json.dumps(payload, default=str)


_HIDDEN_COLUMNS = ("embedding", "search_vector")

DetailFetcher = Callable[[str], Awaitable[dict[str, Any] | None]]


def _clean_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if not any(h in k for h in _HIDDEN_COLUMNS)}


async def lookup_details(
    name: str,
    arguments: dict[str, Any],
    *,
    fetch_bill: DetailFetcher | None = None,
    fetch_action: DetailFetcher | None = None,
) -> tuple[str, dict[str, Any]]:
    """Fetch one bill or executive action. Returns (tool result text, row)."""
    if name == "get_bill_details":
        identifier = _as_str(arguments, "bill_id")
        fetch = fetch_bill or supabase.get_bill
        label = "Bill"
    elif name == "get_executive_action_details":
        identifier = _as_str(arguments, "action_id")
        fetch = fetch_action or supabase.get_executive_action
        label = "Executive action"
    else:
        raise ValidationError(f"Unknown tool: {name}", field="name")

    if not identifier:
        raise ValidationError(f"{label} id is required")
    row = await fetch(identifier)
    if row is None:
        raise LookupError(f"{label} {identifier} not found")
    cleaned = _clean_row(row)
    return json.dumps(cleaned, default=str), cleaned
