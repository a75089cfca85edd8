"""
Tests for the profit search engine.

Covers:
- SearchParams validation
- End-to-end scenarios against synthetic pools and gateways
- Termination bounds, tie-breaking and the single-point domain
- Error propagation and best-effort partial results
"""

import asyncio
import unittest

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from arb_sizer.evaluator import ProfitEvaluator
from arb_sizer.exceptions import GatewayError, InvalidConfiguration
from arb_sizer.search import (
    STRATEGIES,
    AdaptiveStepping,
    BisectionRefinement,
    Phase,
    SearchEngine,
    SearchParams,
    SearchResult,
    SearchState,
    SearchStrategy,
    TerminationReason,
    get_strategy,
    search_both_directions,
)
from arb_sizer.utils import to_base_units
from dex.types import Direction

from tests.doubles import ONE, Q96, TOKEN_IN, FakeGateway, make_pool_state


def tokens(value):
    return to_base_units(value)


def linear_gateway():
    """V3 leg pays back 1.0005x of its input, so profit grows with size."""
    return FakeGateway(lambda amount: amount * 10005 // 10000)


def peaked_gateway():
    """V3 output = x * (1.02 - x / 1_000_000 tokens), so profit peaks."""
    return FakeGateway(lambda x: x * 102 // 100 - x * x // (1_000_000 * ONE))


def peaked_pool_state():
    # Deep 1:1 pair; the V3 pool quotes input slightly above the pair, so A_TO_B
    return make_pool_state(
        reserve_in=10**12 * ONE,
        reserve_mid=10**12 * ONE,
        sqrt_price=Q96 * 101 // 100,
        b0_is_input=False,
    )


def peaked_evaluator(gateway):
    return ProfitEvaluator(
        peaked_pool_state(),
        gateway,
        TOKEN_IN,
        fee_numerator=1000,
        fee_denominator=1000,
    )


def run_strategy(strategy, profit_fn, params):
    """Drive a strategy directly against a plain profit function."""
    seen = []

    async def evaluate(amount):
        seen.append(amount)
        return profit_fn(amount)

    state = SearchState(best_amount=params.min_amount, step=params.initial_step)
    reason = asyncio.run(strategy.search(evaluate, params, state))
    return reason, state, seen


class TestSearchParams(unittest.TestCase):
    """Configuration value object validation."""

    def test_valid(self):
        params = SearchParams(100, 1000, 10, 10)
        self.assertEqual(params.width, 900)
        self.assertEqual(params.max_evaluations, 10_000)

    def test_single_point_domain_allowed(self):
        params = SearchParams(500, 500, 10, 10)
        self.assertEqual(params.width, 0)

    def test_min_above_max(self):
        with self.assertRaises(InvalidConfiguration):
            SearchParams(1001, 1000, 10, 10)

    def test_negative_min(self):
        with self.assertRaises(InvalidConfiguration):
            SearchParams(-1, 1000, 10, 10)

    def test_non_positive_step(self):
        with self.assertRaises(InvalidConfiguration):
            SearchParams(0, 1000, 0, 10)

    def test_decay_bounds(self):
        for decay in (0, 100, -5, 150):
            with self.assertRaises(InvalidConfiguration):
                SearchParams(0, 1000, 10, decay)

    def test_max_evaluations_positive(self):
        with self.assertRaises(InvalidConfiguration):
            SearchParams(0, 1000, 10, 10, max_evaluations=0)

    def test_shrink_never_reaches_zero(self):
        params = SearchParams(0, 1000, 10, 10)
        self.assertEqual(params.shrink(10_000), 1_000)
        self.assertEqual(params.shrink(5), 1)
        self.assertEqual(params.shrink(1), 1)


class TestStrategyRegistry:
    def test_known_strategies(self):
        assert set(STRATEGIES) == {"adaptive", "bisection"}
        assert isinstance(get_strategy("adaptive"), AdaptiveStepping)
        assert isinstance(get_strategy("bisection"), BisectionRefinement)

    def test_strategies_satisfy_protocol(self):
        for name in STRATEGIES:
            assert isinstance(get_strategy(name), SearchStrategy)

    def test_unknown_strategy(self):
        with pytest.raises(InvalidConfiguration):
            get_strategy("golden-section")


class TestAdaptiveStepping:
    def test_monotonic_profit_exhausts_domain(self):
        params = SearchParams(100, 5000, 1000, 10)
        reason, state, seen = run_strategy(AdaptiveStepping(), lambda x: x, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert seen == [100, 1100, 2100, 3100, 4100, 5000]
        assert state.best_amount == 5000
        assert state.phase is Phase.DONE

    def test_peak_is_refined(self):
        # Peak at 4321; coarse pass brackets it, fine pass gets within 100
        params = SearchParams(0, 10_000, 1000, 10)
        reason, state, _ = run_strategy(
            AdaptiveStepping(), lambda x: 10**8 - (x - 4321) ** 2, params
        )

        assert reason is TerminationReason.CONVERGED
        assert abs(state.best_amount - 4321) <= 100
        assert state.step == 100

    def test_peak_left_of_coarse_best_is_refined(self):
        # Coarse pass lands on 4000; the fine pass rescans from 3000 and finds 3700
        params = SearchParams(0, 10_000, 1000, 10)
        reason, state, _ = run_strategy(
            AdaptiveStepping(), lambda x: 10**8 - (x - 3700) ** 2, params
        )

        assert reason is TerminationReason.CONVERGED
        assert abs(state.best_amount - 3700) <= 100
        assert state.best_amount < 4000

    def test_tie_keeps_first_amount(self):
        params = SearchParams(100, 1000, 100, 10)
        reason, state, seen = run_strategy(AdaptiveStepping(), lambda x: 5, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert state.best_amount == 100
        assert state.best_profit == 5
        assert len(seen) == 10

    def test_no_profit_anywhere(self):
        params = SearchParams(100, 1000, 100, 10)
        reason, state, _ = run_strategy(AdaptiveStepping(), lambda x: -x, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert state.best_profit == 0

    def test_single_point(self):
        params = SearchParams(700, 700, 100, 10)
        reason, state, seen = run_strategy(AdaptiveStepping(), lambda x: 42, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert seen == [700]
        assert state.best_amount == 700
        assert state.best_profit == 42

    def test_max_evaluations_cap(self):
        params = SearchParams(0, 10_000, 1, 10, max_evaluations=25)
        reason, state, seen = run_strategy(AdaptiveStepping(), lambda x: x, params)

        assert reason is TerminationReason.MAX_EVALUATIONS
        assert state.evaluations == 25
        assert len(seen) == 25


class TestBisectionRefinement:
    def test_domain_narrower_than_step_evaluates_both_ends(self):
        params = SearchParams(tokens(10_000), tokens(15_000), tokens(10_000), 50)
        reason, state, seen = run_strategy(
            BisectionRefinement(), lambda x: tokens(100), params
        )

        assert seen[:2] == [tokens(10_000), tokens(15_000)]
        assert reason is TerminationReason.CONVERGED
        assert state.best_profit == tokens(100)
        assert state.best_amount == tokens(10_000)
        assert len(seen) <= BisectionRefinement().evaluation_bound(params)

    def test_high_decay_keeps_shrinking_until_a_pass_evaluates(self):
        # At 99% decay several passes fit the whole bracket without a midpoint
        params = SearchParams(1000, 1005, 10, 99)
        reason, state, seen = run_strategy(BisectionRefinement(), lambda x: x, params)

        assert seen[:2] == [1000, 1005]
        assert len(seen) > 2
        assert reason is TerminationReason.CONVERGED
        assert state.best_amount == 1005
        assert state.best_profit == 1005

    def test_monotonic_profit_moves_to_the_top(self):
        params = SearchParams(100, 5000, 1000, 10)
        reason, state, seen = run_strategy(BisectionRefinement(), lambda x: x, params)

        assert reason is TerminationReason.CONVERGED
        assert state.best_amount >= 5000 - 1000
        assert len(seen) <= BisectionRefinement().evaluation_bound(params)

    def test_single_point(self):
        params = SearchParams(700, 700, 100, 10)
        reason, state, seen = run_strategy(BisectionRefinement(), lambda x: 42, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert seen == [700]
        assert state.best_profit == 42

    def test_no_profit_anywhere(self):
        params = SearchParams(0, 1000, 100, 10)
        reason, state, _ = run_strategy(BisectionRefinement(), lambda x: -1, params)

        assert reason is TerminationReason.DOMAIN_EXHAUSTED
        assert state.best_profit == 0

    def test_max_evaluations_cap(self):
        params = SearchParams(0, 10**12, 1, 10, max_evaluations=5)
        reason, state, _ = run_strategy(BisectionRefinement(), lambda x: x, params)

        assert reason is TerminationReason.MAX_EVALUATIONS
        assert state.evaluations == 5


@settings(max_examples=60, deadline=None)
@given(
    min_amount=st.integers(min_value=0, max_value=10**6),
    width=st.integers(min_value=0, max_value=10**6),
    coarse_steps=st.integers(min_value=1, max_value=50),
    decay=st.integers(min_value=1, max_value=99),
    peak=st.integers(min_value=0, max_value=3 * 10**6),
    strategy_name=st.sampled_from(sorted(STRATEGIES)),
)
def test_search_terminates_within_bound(
    min_amount, width, coarse_steps, decay, peak, strategy_name
):
    params = SearchParams(
        min_amount, min_amount + width, max(1, width // coarse_steps), decay
    )
    strategy = get_strategy(strategy_name)

    reason, state, seen = run_strategy(
        strategy, lambda x: 10**13 - (x - peak) ** 2, params
    )

    assert len(seen) <= strategy.evaluation_bound(params)
    assert reason is not TerminationReason.MAX_EVALUATIONS
    assert params.min_amount <= state.best_amount <= params.max_amount


class TestSearchEngine:
    """End-to-end runs through the evaluator and a fake quote gateway."""

    @pytest.mark.asyncio
    async def test_increasing_profit_reports_domain_maximum(self):
        gateway = linear_gateway()
        evaluator = ProfitEvaluator(make_pool_state(), gateway, TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params).run()

        assert result.direction is Direction.A_TO_B
        assert result.termination_reason is TerminationReason.DOMAIN_EXHAUSTED
        assert result.best_amount_in == tokens(5000)
        assert result.best_profit > 0
        assert result.evaluation_count == 6
        assert len(gateway.calls) == 6
        assert result.found_opportunity

    @pytest.mark.asyncio
    async def test_peaked_profit_converges_near_optimum(self):
        gateway = peaked_gateway()
        evaluator = peaked_evaluator(gateway)
        params = SearchParams(tokens(100), tokens(100_000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params).run()

        # Analytic optimum: d/dx (0.02x - x^2 / 1e6) = 0 at x = 10_000
        assert result.direction is Direction.A_TO_B
        assert result.termination_reason is TerminationReason.CONVERGED
        assert result.best_amount_in == tokens(10_000)
        assert abs(result.best_profit - tokens(100)) < tokens("0.01")
        assert result.evaluation_count == 22
        assert result.evaluation_count <= AdaptiveStepping().evaluation_bound(params)

    @pytest.mark.asyncio
    async def test_peaked_profit_with_bisection(self):
        gateway = peaked_gateway()
        evaluator = peaked_evaluator(gateway)
        params = SearchParams(tokens(100), tokens(100_000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params, BisectionRefinement()).run()

        # Approximation only: a positive profit, no optimality guarantee
        assert result.found_opportunity
        assert result.evaluation_count <= BisectionRefinement().evaluation_bound(params)

    @pytest.mark.asyncio
    async def test_equal_prices_stop_before_any_evaluation(self):
        gateway = linear_gateway()
        state = make_pool_state(reserve_in=ONE, reserve_mid=ONE, sqrt_price=Q96)
        evaluator = ProfitEvaluator(state, gateway, TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params).run()

        assert result.termination_reason is TerminationReason.NO_PRICE_DIFFERENCE
        assert result.direction is None
        assert result.best_amount_in is None
        assert result.best_profit == 0
        assert result.evaluation_count == 0
        assert gateway.calls == []
        assert not result.found_opportunity

    @pytest.mark.asyncio
    async def test_single_point_domain(self):
        evaluator = ProfitEvaluator(make_pool_state(), linear_gateway(), TOKEN_IN)
        params = SearchParams(tokens(1000), tokens(1000), tokens(100), 10)

        result = await SearchEngine(evaluator, params).run()

        assert result.evaluation_count == 1
        assert result.best_amount_in == tokens(1000)
        assert result.termination_reason is TerminationReason.DOMAIN_EXHAUSTED

    @pytest.mark.asyncio
    async def test_losing_direction_reports_no_opportunity(self):
        evaluator = ProfitEvaluator(make_pool_state(), linear_gateway(), TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params).run(direction=Direction.B_TO_A)

        assert result.best_amount_in is None
        assert result.best_profit == 0
        assert result.termination_reason is TerminationReason.DOMAIN_EXHAUSTED

    @pytest.mark.asyncio
    async def test_gateway_error_propagates(self):
        gateway = FakeGateway(error=GatewayError("quoter down"), fail_after=3)
        evaluator = ProfitEvaluator(make_pool_state(), gateway, TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

        with pytest.raises(GatewayError):
            await SearchEngine(evaluator, params).run()

    @pytest.mark.asyncio
    async def test_best_effort_reports_incomplete_result(self):
        gateway = FakeGateway(
            lambda amount: amount * 10005 // 10000,
            error=GatewayError("quoter down"),
            fail_after=3,
        )
        evaluator = ProfitEvaluator(make_pool_state(), gateway, TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

        result = await SearchEngine(evaluator, params).run(best_effort=True)

        assert result.termination_reason is TerminationReason.ABORTED
        assert not result.complete
        assert result.error == "quoter down"
        assert result.evaluation_count == 3
        assert result.best_amount_in == tokens(2100)
        assert not result.found_opportunity

    @pytest.mark.asyncio
    async def test_cache_hits_are_reported(self):
        gateway = linear_gateway()
        evaluator = ProfitEvaluator(make_pool_state(), gateway, TOKEN_IN)
        params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)
        engine = SearchEngine(evaluator, params)

        await engine.run()
        second = await engine.run()

        assert second.evaluation_count == 6
        assert second.cache_hits == 6
        assert len(gateway.calls) == 6

    def test_rejects_non_params(self):
        evaluator = ProfitEvaluator(make_pool_state(), linear_gateway(), TOKEN_IN)
        with pytest.raises(InvalidConfiguration):
            SearchEngine(evaluator, {"min_amount": 1})


@pytest.mark.asyncio
async def test_search_both_directions_is_independent():
    gateway = linear_gateway()
    params = SearchParams(tokens(100), tokens(5000), tokens(1000), 10)

    results = await search_both_directions(
        lambda: ProfitEvaluator(make_pool_state(), gateway, TOKEN_IN), params
    )

    assert set(results) == {Direction.A_TO_B, Direction.B_TO_A}
    assert results[Direction.A_TO_B].best_amount_in == tokens(5000)
    assert results[Direction.B_TO_A].best_amount_in is None
    assert results[Direction.A_TO_B].cache_hits == 0
    assert results[Direction.B_TO_A].cache_hits == 0


def test_result_to_dict():
    result = SearchResult(
        direction=Direction.A_TO_B,
        best_amount_in=tokens(10_000),
        best_profit=tokens("100.456"),
        evaluation_count=22,
        termination_reason=TerminationReason.CONVERGED,
        elapsed_time=1.5,
    )

    data = result.to_dict()

    assert data["direction"] == "v2 -> v3"
    assert data["best_amount_in"] == "10000.00000000"
    assert data["best_profit"] == "100.46"
    assert data["termination_reason"] == "converged"
    assert data["elapsed"] == "1.50s"
    assert data["complete"] is True
