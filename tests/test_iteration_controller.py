from __future__ import annotations

import pytest

from billbot.agents.iteration import (
    MAX_ATTEMPTS_PER_STRATEGY,
    STRATEGY_ORDER,
    ControllerState,
    IterationController,
    apply_refinement,
    expand_terms,
)
from billbot.errors import RetrievalError
from billbot.models.results import ALL_KINDS, ContentKind, SearchFilters, SearchRequest
from billbot.models.session import CompletionReason, RefinementStrategy


def make_controller(**overrides) -> IterationController:
    options = dict(
        max_iterations=20,
        target_count=3,
        sufficient_threshold=0.85,
        top_k=3,
        widen_years=4,
    )
    options.update(overrides)
    return IterationController(**options)


class TestEvaluate:
    def test_sufficient_results_after_first_round(self):
        controller = make_controller()
        decision = controller.evaluate(1, 3, [0.92, 0.9, 0.88])

        assert decision.done
        assert decision.reason is CompletionReason.SUFFICIENT_RESULTS
        assert controller.iteration == 1

    def test_not_sufficient_when_one_top_score_misses_threshold(self):
        controller = make_controller()
        decision = controller.evaluate(1, 3, [0.92, 0.9, 0.85])

        assert decision.state is ControllerState.REFINING
        assert decision.next_strategy is RefinementStrategy.EXPAND_TERMS

    def test_not_sufficient_below_target_count(self):
        controller = make_controller(target_count=5)
        decision = controller.evaluate(1, 3, [0.99, 0.99, 0.99])

        assert not decision.done

    def test_no_new_results_cannot_fire_on_first_round(self):
        controller = make_controller()
        decision = controller.evaluate(1, 0, [])

        assert decision.state is ControllerState.REFINING

    def test_no_new_results_at_third_round(self):
        controller = make_controller()
        assert not controller.evaluate(1, 2, [0.5, 0.4]).done
        assert not controller.evaluate(2, 0, [0.5, 0.4]).done
        decision = controller.evaluate(3, 0, [0.5, 0.4])

        assert decision.done
        assert decision.reason is CompletionReason.NO_NEW_RESULTS
        assert controller.iteration == 3

    def test_max_iterations(self):
        controller = make_controller(max_iterations=2)
        controller.evaluate(1, 1, [0.2])
        decision = controller.evaluate(2, 1, [0.2, 0.1])

        assert decision.reason is CompletionReason.MAX_ITERATIONS

    def test_rounds_must_be_sequential(self):
        controller = make_controller()
        with pytest.raises(ValueError):
            controller.evaluate(2, 1, [0.1])

    def test_evaluate_after_done_keeps_reason(self):
        controller = make_controller()
        controller.evaluate(1, 3, [0.9, 0.9, 0.9])
        decision = controller.evaluate(2, 0, [])

        assert decision.reason is CompletionReason.SUFFICIENT_RESULTS


class TestStrategies:
    def test_strategies_follow_fixed_order_each_tried_twice(self):
        controller = make_controller(max_iterations=50)
        request = SearchRequest(query="tax credits")
        seen = []
        controller.evaluate(1, 1, [0.1])
        iteration = 1
        while not controller.done:
            _, strategy = controller.refine(request)
            seen.append(strategy)
            iteration += 1
            controller.evaluate(iteration, 1, [0.1])

        expected = [s for s in STRATEGY_ORDER for _ in range(MAX_ATTEMPTS_PER_STRATEGY)]
        assert seen[: len(expected)] == expected[: len(seen)]
        assert seen.count(RefinementStrategy.EXPAND_TERMS) == MAX_ATTEMPTS_PER_STRATEGY
        assert controller.reason is CompletionReason.MAX_ITERATIONS

    def test_first_round_uses_request_unchanged(self):
        controller = make_controller()
        request = SearchRequest(query="tax credits")
        refined, strategy = controller.refine(request)

        assert strategy is RefinementStrategy.INITIAL
        assert refined is request

    def test_refine_after_done_raises(self):
        controller = make_controller()
        controller.abort()
        with pytest.raises(RuntimeError):
            controller.refine(SearchRequest(query="x"))


class TestFailures:
    def test_non_recoverable_error_stops_with_error(self):
        controller = make_controller()
        decision = controller.fail(1, RetrievalError("bad rows", reason="malformed_response"), [])

        assert decision.reason is CompletionReason.ERROR

    def test_recoverable_error_counts_as_empty_round(self):
        controller = make_controller()
        controller.evaluate(1, 2, [0.4, 0.3])
        decision = controller.fail(2, RetrievalError("slow", reason="timeout"), [0.4, 0.3])

        assert decision.state is ControllerState.REFINING
        assert controller.iteration == 2

        decision = controller.fail(3, RetrievalError("down", reason="backend_unavailable"), [0.4, 0.3])
        assert decision.reason is CompletionReason.NO_NEW_RESULTS

    def test_abort_from_any_state(self):
        controller = make_controller()
        controller.evaluate(1, 3, [0.9, 0.9, 0.9])
        assert controller.abort().reason is CompletionReason.USER_ABORT


class TestRefinements:
    def test_expand_terms_adds_synonyms_once(self):
        expanded = expand_terms("climate adaptation")

        assert expanded.startswith("climate adaptation ")
        assert "resilience" in expanded
        assert expanded.split().count("climate") == 1

    def test_expand_terms_without_known_words_adds_generic_terms(self):
        assert expand_terms("widgets") == "widgets legislation policy"

    def test_broaden_scope_searches_all_kinds(self):
        request = SearchRequest(query="x", kinds=(ContentKind.BILL,), threshold=0.3)
        refined = apply_refinement(request, RefinementStrategy.BROADEN_SCOPE)

        assert refined.kinds == ALL_KINDS
        assert refined.threshold == pytest.approx(0.2)

    def test_adjust_filters_keeps_only_dates(self):
        filters = SearchFilters(chamber="house", statuses=("introduced",), sponsor="Smith", date_from="2020-01-01")
        refined = apply_refinement(SearchRequest(query="x", filters=filters), RefinementStrategy.ADJUST_FILTERS)

        assert refined.filters == SearchFilters(date_from="2020-01-01")

    def test_change_timeframe_widens_window(self):
        filters = SearchFilters(date_from="2020-02-29", date_to="2021-01-01")
        refined = apply_refinement(
            SearchRequest(query="x", filters=filters), RefinementStrategy.CHANGE_TIMEFRAME, widen_years=4
        )

        assert refined.filters.date_from == "2016-02-29"
        assert refined.filters.date_to is None

    def test_deepen_search_caps_limit(self):
        refined = apply_refinement(SearchRequest(query="x", limit=40, threshold=0.1), RefinementStrategy.DEEPEN_SEARCH)

        assert refined.limit == 50
        assert refined.threshold == 0.0
