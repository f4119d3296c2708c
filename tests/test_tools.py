from __future__ import annotations

import json

import pytest

from fakes import make_result

from billbot.agents.tools import (
    TOOLS,
    is_search_tool,
    lookup_details,
    parse_search_arguments,
    search_type,
    summarize_results,
)
from billbot.errors import ValidationError
from billbot.models.results import ALL_KINDS, ContentKind, SearchFilters


def test_tool_catalog_names():
    names = [t["name"] for t in TOOLS]
    assert names == [
        "search_legislation",
        "search_bills",
        "search_executive_actions",
        "get_bill_details",
        "get_executive_action_details",
    ]
    assert is_search_tool("search_bills")
    assert not is_search_tool("get_bill_details")


def test_parse_search_arguments_uses_defaults():
    request = parse_search_arguments(
        "search_bills",
        {"query": "  farm subsidies  "},
        defaults=SearchFilters(chamber="house", congress=118),
    )

    assert request.query == "farm subsidies"
    assert request.kinds == (ContentKind.BILL,)
    assert request.filters.chamber == "house"
    assert request.filters.congress == 118
    assert request.limit == 10
    assert request.threshold == 0.3


def test_model_arguments_override_defaults_and_are_clamped():
    request = parse_search_arguments(
        "search_legislation",
        {"query": "tax", "chamber": "senate", "status": "enacted", "limit": 500, "threshold": 2},
        defaults=SearchFilters(chamber="house"),
    )

    assert request.kinds == ALL_KINDS
    assert request.filters.chamber == "senate"
    assert request.filters.statuses == ("enacted",)
    assert request.limit == 50
    assert request.threshold == 1.0


@pytest.mark.parametrize(
    "name, arguments",
    [
        ("search_bills", {}),
        ("search_bills", {"query": "   "}),
        ("search_bills", {"query": "tax", "limit": "lots"}),
        ("search_bills", {"query": "tax", "status": 5}),
        ("search_bills", {"query": "tax", "status": ["enacted", 3]}),
        ("search_bills", {"query": "tax", "date_from": "last spring"}),
        ("drop_tables", {"query": "tax"}),
    ],
)
def test_invalid_search_arguments(name, arguments):
    with pytest.raises(ValidationError):
        parse_search_arguments(name, arguments)


def test_search_type():
    assert search_type(ALL_KINDS) == "all"
    assert search_type((ContentKind.EXECUTIVE_ACTION,)) == "executive_action"


def test_summarize_results_is_json_for_the_model():
    text = summarize_results([make_result("1", 0.8)], new_count=1, total=4)
    payload = json.loads(text)

    assert payload["new_results"] == 1
    assert payload["total_distinct_results"] == 4
    assert payload["results"][0]["id"] == "1"


@pytest.mark.asyncio
async def test_lookup_details_hides_vector_columns():
    async def fetch_bill(bill_id):
        return {"id": bill_id, "title": "Clean Energy Act", "embedding": [0.1], "search_vector": "x"}

    text, row = await lookup_details("get_bill_details", {"bill_id": "HR 1"}, fetch_bill=fetch_bill)

    assert row == {"id": "HR 1", "title": "Clean Energy Act"}
    assert json.loads(text) == row


@pytest.mark.asyncio
async def test_lookup_details_not_found():
    async def fetch_action(action_id):
        return None

    with pytest.raises(LookupError):
        await lookup_details("get_executive_action_details", {"action_id": "EO-1"}, fetch_action=fetch_action)


@pytest.mark.asyncio
async def test_lookup_details_requires_id():
    with pytest.raises(ValidationError):
        await lookup_details("get_bill_details", {})
