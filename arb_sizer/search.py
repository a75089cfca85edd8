"""
Profit-search engine.

Finds the input amount that maximizes the round-trip profit reported by a
ProfitEvaluator, over a bounded domain, with a bounded number of evaluations.
Two strategies share one interface:

- AdaptiveStepping: walk forward with a coarse step until profit declines,
  then rescan the bracket around the best amount with a smaller step.
- BisectionRefinement: halve the domain towards improvements. Cheaper, but
  it assumes the profit curve has a single maximum and can miss the optimum
  when it does not.

All amounts and profits are exact integers in the input token's base units.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

from dex.types import Direction

from .evaluator import ProfitEvaluator
from .exceptions import ArbSizerError, InvalidConfiguration
from .utils import format_amount, format_duration

logger = logging.getLogger(__name__)

EvaluateFn = Callable[[int], Awaitable[int]]


class Phase(Enum):
    """Search state machine phases."""

    EXPANDING = "expanding"
    REFINING = "refining"
    DONE = "done"


class TerminationReason(Enum):
    """Why a search run stopped."""

    CONVERGED = "converged"
    DOMAIN_EXHAUSTED = "domain_exhausted"
    NO_PRICE_DIFFERENCE = "no_price_difference"
    MAX_EVALUATIONS = "max_evaluations"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SearchParams:
    """
    Validated search configuration, in input-token base units.

    Attributes:
        min_amount: Smallest trade size to evaluate
        max_amount: Largest trade size to evaluate (may equal min_amount)
        initial_step: Coarse step size
        decay_percent: New step = step * decay_percent / 100, in (0, 100)
        max_evaluations: Hard cap on evaluator calls per run
        decimals: Token decimals, only used to format log lines
    """

    min_amount: int
    max_amount: int
    initial_step: int
    decay_percent: int
    max_evaluations: int = 10_000
    decimals: int = 18

    def __post_init__(self):
        if self.min_amount < 0:
            raise InvalidConfiguration(
                f"min_amount must be non-negative: {self.min_amount}"
            )
        if self.min_amount > self.max_amount:
            raise InvalidConfiguration(
                f"min_amount {self.min_amount} exceeds max_amount {self.max_amount}"
            )
        if self.initial_step <= 0:
            raise InvalidConfiguration(
                f"initial_step must be positive: {self.initial_step}"
            )
        if not 0 < self.decay_percent < 100:
            raise InvalidConfiguration(
                f"decay_percent must be in (0, 100): {self.decay_percent}"
            )
        if self.max_evaluations <= 0:
            raise InvalidConfiguration(
                f"max_evaluations must be positive: {self.max_evaluations}"
            )

    @property
    def width(self) -> int:
        return self.max_amount - self.min_amount

    def shrink(self, step: int) -> int:
        """Apply the decay factor to a step, never going below one base unit."""
        return max(1, step * self.decay_percent // 100)


@dataclass
class SearchState:
    """Mutable state of one search run. Owned by a single strategy invocation."""

    best_amount: int
    step: int
    best_profit: int = 0
    phase: Phase = Phase.EXPANDING
    cursor: int = 0
    low: int = 0
    high: int = 0
    evaluations: int = 0

    def record(self, amount: int, profit: int) -> bool:
        """Keep (amount, profit) if strictly better. Ties keep the earlier amount."""
        if profit > self.best_profit:
            self.best_amount = amount
            self.best_profit = profit
            return True
        return False


@dataclass
class SearchResult:
    """
    Outcome of one search run.

    `best_amount_in` is None when no positive profit was seen. `complete` is
    False only for best-effort runs that were cut short by an error; their
    numbers are the best known so far, not a final answer.
    """

    direction: Optional[Direction]
    best_amount_in: Optional[int]
    best_profit: int
    evaluation_count: int
    termination_reason: TerminationReason
    elapsed_time: float
    complete: bool = True
    error: Optional[str] = None
    cache_hits: int = 0

    @property
    def found_opportunity(self) -> bool:
        return self.complete and self.best_amount_in is not None and self.best_profit > 0

    def to_dict(self, decimals: int = 18) -> Dict:
        """Human-readable view for logs and reports."""
        return {
            "direction": self.direction.label if self.direction else None,
            "best_amount_in": (
                format_amount(self.best_amount_in, decimals)
                if self.best_amount_in is not None
                else None
            ),
            "best_profit": format_amount(self.best_profit, decimals, places=2),
            "evaluation_count": self.evaluation_count,
            "cache_hits": self.cache_hits,
            "termination_reason": self.termination_reason.value,
            "elapsed": format_duration(self.elapsed_time),
            "complete": self.complete,
            "error": self.error,
        }


@runtime_checkable
class SearchStrategy(Protocol):
    """A way of choosing the next amount to evaluate."""

    name: str

    async def search(
        self, evaluate: EvaluateFn, params: SearchParams, state: SearchState
    ) -> TerminationReason:
        """Drive `state` to a terminal outcome and return the reason."""
        ...

    def evaluation_bound(self, params: SearchParams) -> int:
        """Worst-case number of evaluations for `params`, before the hard cap."""
        ...


async def _probe(
    evaluate: EvaluateFn, params: SearchParams, state: SearchState, amount: int
) -> int:
    profit = await evaluate(amount)
    state.evaluations += 1

    if state.record(amount, profit):
        logger.info(
            f"Potential profit increased: {format_amount(profit, params.decimals, places=2)}. "
            f"Amount in must be: {format_amount(amount, params.decimals)}"
        )
    else:
        logger.debug(
            f"[{state.phase.value}] amount={amount} profit={profit} "
            f"best={state.best_profit}@{state.best_amount}"
        )
    return profit


class AdaptiveStepping:
    """
    Forward stepping with one refinement pass.

    EXPANDING walks from min_amount by initial_step. The first decline (a
    profit below the best, past the best amount) brackets the optimum in
    [best - step, decline point]; the step shrinks by the decay factor, the
    cursor rolls back to the bracket start and REFINING rescans the bracket.
    A decline while REFINING ends the run (CONVERGED). Reaching max_amount
    ends it with DOMAIN_EXHAUSTED.
    """

    name = "adaptive"

    async def search(
        self, evaluate: EvaluateFn, params: SearchParams, state: SearchState
    ) -> TerminationReason:
        state.cursor = params.min_amount
        state.step = params.initial_step
        state.low, state.high = params.min_amount, params.max_amount

        while True:
            if state.evaluations >= params.max_evaluations:
                return TerminationReason.MAX_EVALUATIONS

            profit = await _probe(evaluate, params, state, state.cursor)

            declined = (
                state.best_profit > 0
                and profit < state.best_profit
                and state.cursor > state.best_amount
            )

            if declined and state.phase is Phase.EXPANDING:
                coarse_step = state.step
                state.step = params.shrink(coarse_step)
                state.phase = Phase.REFINING
                state.low = max(params.min_amount, state.best_amount - coarse_step)
                state.high = state.cursor

                logger.info(
                    f"Found best range: {format_amount(state.low, params.decimals)} - "
                    f"{format_amount(state.high, params.decimals)}, "
                    f"profit {format_amount(state.best_profit, params.decimals, places=2)}"
                )
                logger.info("Step decreasing... Trying to find a better amount in")

                state.cursor = min(state.low + state.step, state.high)
                continue

            if declined:
                state.phase = Phase.DONE
                return TerminationReason.CONVERGED

            if state.cursor >= state.high:
                state.phase = Phase.DONE
                return TerminationReason.DOMAIN_EXHAUSTED

            state.cursor = min(state.cursor + state.step, state.high)

    def evaluation_bound(self, params: SearchParams) -> int:
        step = params.initial_step
        small_step = params.shrink(step)
        expanding = -(-params.width // step) + 1
        # Ties can stretch the bracket, so refining is bounded by the whole domain
        refining = -(-params.width // small_step) + 1
        return expanding + refining


class BisectionRefinement:
    """
    Bisection towards improvements, with step-based refinement passes.

    While the bracket is wider than the step, the midpoint is evaluated; an
    improvement moves `low` up, anything else moves `high` down. When the
    bracket fits in the step, the step shrinks and a REFINING pass continues;
    a refining pass that evaluated something without improving (or a step of
    one unit) ends the run. A domain that already fits in the initial step
    has both of its ends evaluated first.

    This assumes a single maximum over the domain. Concentrated-liquidity
    pricing is piecewise, so the result is an approximation, not a
    guaranteed global optimum.
    """

    name = "bisection"

    async def search(
        self, evaluate: EvaluateFn, params: SearchParams, state: SearchState
    ) -> TerminationReason:
        state.step = params.initial_step
        state.low, state.high = params.min_amount, params.max_amount

        if params.width == 0:
            await _probe(evaluate, params, state, params.min_amount)
            state.phase = Phase.DONE
            return TerminationReason.DOMAIN_EXHAUSTED

        if params.width <= state.step:
            # No midpoint would be evaluated at this step: the ends are the coarse pass
            for amount in (state.low, state.high):
                if state.evaluations >= params.max_evaluations:
                    return TerminationReason.MAX_EVALUATIONS
                state.cursor = amount
                await _probe(evaluate, params, state, amount)

        improved_in_pass = False
        pass_start = state.evaluations
        while True:
            while state.high - state.low > state.step:
                if state.evaluations >= params.max_evaluations:
                    return TerminationReason.MAX_EVALUATIONS

                state.cursor = state.low + (state.high - state.low) // 2
                before = state.best_profit
                await _probe(evaluate, params, state, state.cursor)

                if state.best_profit > before:
                    state.low = state.cursor
                    improved_in_pass = True
                else:
                    state.high = state.cursor

            if state.step == 1:
                break
            # A pass with no evaluations has not failed yet; keep shrinking
            probed = state.evaluations > pass_start
            if state.phase is Phase.REFINING and probed and not improved_in_pass:
                break

            state.phase = Phase.REFINING
            state.step = params.shrink(state.step)
            improved_in_pass = False
            pass_start = state.evaluations
            logger.info(
                f"Reducing step to {format_amount(state.step, params.decimals)} "
                "to search for a better amount in"
            )

        state.phase = Phase.DONE
        if state.best_profit <= 0:
            return TerminationReason.DOMAIN_EXHAUSTED
        return TerminationReason.CONVERGED

    def evaluation_bound(self, params: SearchParams) -> int:
        if params.width == 0:
            return 1
        # Both ends, then every evaluation halves a bracket that is never widened
        return params.width.bit_length() + 3


STRATEGIES = {
    AdaptiveStepping.name: AdaptiveStepping,
    BisectionRefinement.name: BisectionRefinement,
}


def get_strategy(name: str) -> SearchStrategy:
    """Instantiate a strategy by name ("adaptive" or "bisection")."""
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise InvalidConfiguration(
            f"Unknown search strategy '{name}' (must be one of {sorted(STRATEGIES)})"
        ) from None


class SearchEngine:
    """
    Runs one strategy against one evaluator and reports a SearchResult.

    The direction is chosen once from spot prices unless given explicitly.
    Evaluator errors propagate to the caller; with `best_effort=True` they are
    instead turned into an incomplete result labelled ABORTED.
    """

    def __init__(
        self,
        evaluator: ProfitEvaluator,
        params: SearchParams,
        strategy: Optional[SearchStrategy] = None,
    ):
        if not isinstance(params, SearchParams):
            raise InvalidConfiguration("params must be a SearchParams instance")

        self.evaluator = evaluator
        self.params = params
        self.strategy = strategy or AdaptiveStepping()

    async def run(
        self, direction: Optional[Direction] = None, best_effort: bool = False
    ) -> SearchResult:
        start = time.perf_counter()

        if direction is None:
            direction = self.evaluator.choose_direction()
            if direction is None:
                logger.error(
                    "No opportunity for arbitrage: price between v2 and v3 is the same"
                )
                return SearchResult(
                    direction=None,
                    best_amount_in=None,
                    best_profit=0,
                    evaluation_count=0,
                    termination_reason=TerminationReason.NO_PRICE_DIFFERENCE,
                    elapsed_time=time.perf_counter() - start,
                )

        logger.info(f"Arbitrage must be done from {direction.label} ({self.strategy.name})")

        state = SearchState(best_amount=self.params.min_amount, step=self.params.initial_step)
        hits_before = self.evaluator.cache_hits

        async def evaluate(amount: int) -> int:
            return await self.evaluator.evaluate(amount, direction)

        try:
            reason = await self.strategy.search(evaluate, self.params, state)
        except ArbSizerError as e:
            if not best_effort:
                raise
            logger.warning(
                f"Search aborted after {state.evaluations} evaluations: {e}. "
                "Reporting best known values, run incomplete"
            )
            return self._result(direction, state, TerminationReason.ABORTED, start, hits_before, error=str(e))

        result = self._result(direction, state, reason, start, hits_before)
        self._log_result(result)
        return result

    def _result(
        self,
        direction: Direction,
        state: SearchState,
        reason: TerminationReason,
        start: float,
        hits_before: int,
        error: Optional[str] = None,
    ) -> SearchResult:
        return SearchResult(
            direction=direction,
            best_amount_in=state.best_amount if state.best_profit > 0 else None,
            best_profit=state.best_profit,
            evaluation_count=state.evaluations,
            termination_reason=reason,
            elapsed_time=time.perf_counter() - start,
            complete=error is None,
            error=error,
            cache_hits=self.evaluator.cache_hits - hits_before,
        )

    def _log_result(self, result: SearchResult) -> None:
        decimals = self.params.decimals
        if result.best_amount_in is None:
            logger.warning("Potential profit is 0: No opportunity for arbitrage")
        else:
            logger.info(
                f"Potential profit: {format_amount(result.best_profit, decimals, places=2)} "
                f"with amount in: {format_amount(result.best_amount_in, decimals)}"
            )
        logger.info(
            f"Search finished ({result.termination_reason.value}) after "
            f"{result.evaluation_count} evaluations in {format_duration(result.elapsed_time)}"
        )


async def search_both_directions(
    make_evaluator: Callable[[], ProfitEvaluator],
    params: SearchParams,
    strategy_name: str = AdaptiveStepping.name,
    best_effort: bool = False,
) -> Dict[Direction, SearchResult]:
    """
    Search both directions concurrently.

    Each direction gets its own evaluator and strategy, so the runs share no
    state beyond the read-only pool snapshot.
    """
    directions = list(Direction)
    engines = [
        SearchEngine(make_evaluator(), params, get_strategy(strategy_name))
        for _ in directions
    ]
    results = await asyncio.gather(
        *(
            engine.run(direction=direction, best_effort=best_effort)
            for engine, direction in zip(engines, directions)
        )
    )
    return dict(zip(directions, results))
