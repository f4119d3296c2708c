from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from billbot.config import Settings
from billbot.models.results import ComponentScores, ScoreWeights, SearchRequest
from billbot.models.schemas import ChatRequest, SearchFiltersModel
from billbot.models.session import (
    CompletionReason,
    RefinementStrategy,
    SearchIteration,
    SearchSession,
    ToolCallRecord,
    ToolCallStatus,
)


def _iteration(index: int, cumulative: int = 0) -> SearchIteration:
    return SearchIteration(
        index=index,
        request=SearchRequest(query="tax"),
        strategy=RefinementStrategy.INITIAL,
        result_count=0,
        new_count=0,
        cumulative_count=cumulative,
        duration_ms=1,
        started_at="2026-01-01T00:00:00+00:00",
    )


class TestScoreWeights:
    def test_default_composite(self):
        scores = ComponentScores(semantic=1.0, keyword=0.5, freshness=0.0, authority=1.0)
        assert ScoreWeights().composite(scores) == pytest.approx(0.4 + 0.15 + 0.1)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            ScoreWeights(semantic=0.5, keyword=0.5, freshness=0.5, authority=0.0)

    def test_component_scores_are_clamped(self):
        scores = ComponentScores.clamped(1.7, -0.2, None, float("nan"))
        assert scores.to_dict() == {"semantic": 1.0, "keyword": 0.0, "freshness": 0.0, "authority": 0.0}


class TestSearchSession:
    def test_iterations_are_sequential(self):
        session = SearchSession(session_id="s1", original_query="tax")
        session.record(_iteration(1, cumulative=3))

        with pytest.raises(ValueError):
            session.record(_iteration(3))
        assert session.total_results == 3

    def test_seal_is_final(self):
        session = SearchSession(session_id="s1", original_query="tax")
        session.seal(CompletionReason.NO_NEW_RESULTS)
        session.seal(CompletionReason.ERROR)

        assert session.completion_reason is CompletionReason.NO_NEW_RESULTS
        with pytest.raises(RuntimeError):
            session.record(_iteration(1))


def test_tool_call_finalizes_once():
    record = ToolCallRecord(id="c1", name="search_bills", arguments={})
    record.complete("3 results")

    assert record.status is ToolCallStatus.COMPLETED
    assert record.duration_ms is not None
    with pytest.raises(RuntimeError):
        record.fail("late")


class TestSettings:
    def test_defaults_are_valid(self):
        settings = Settings(_env_file=None)
        assert settings.max_iterations == 20
        assert settings.cors_origin_list == ["http://localhost:3000", "http://localhost:5173"]

    def test_weights_must_sum_to_one(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, semantic_weight=0.9)

    def test_max_iterations_range(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, max_iterations=0)


class TestChatRequest:
    def test_message_is_stripped(self):
        request = ChatRequest(message="  tax bills  ", connection_id="c1")
        assert request.message == "tax bills"
        assert request.options.max_iterations is None

    def test_date_range_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            SearchFiltersModel(date_from=date(2024, 1, 1), date_to=date(2023, 1, 1))

    def test_filters_convert_to_search_filters(self):
        filters = SearchFiltersModel(chamber="house", status=["introduced"], date_from=date(2023, 1, 1)).to_filters()
        assert filters.chamber == "house"
        assert filters.statuses == ("introduced",)
        assert filters.date_from == "2023-01-01"
