"""
Profit evaluator for a two-pool V2/V3 arbitrage.

Routes an input amount through the constant-product pair (priced locally)
and the concentrated-liquidity pool (priced by the remote quoter) and returns
the exact signed profit in the input token's base units.
"""

import logging
from typing import Dict, Optional, Tuple

from dex.adapters.v2 import get_amount_out, spot_price
from dex.adapters.v3 import QuoteGateway, spot_price_from_sqrt
from dex.types import Direction, PoolState

from .exceptions import InvalidConfiguration, InvalidReserves

logger = logging.getLogger(__name__)


class ProfitEvaluator:
    """
    Prices one arbitrage round trip for a fixed pool snapshot.

    The snapshot is never refreshed, so the evaluator is pure for its
    lifetime and results are memoized by (amount, direction) when `cache`
    is enabled.
    """

    def __init__(
        self,
        pool_state: PoolState,
        gateway: QuoteGateway,
        token_in: str,
        fee_tier: int = 3000,
        fee_numerator: int = 997,
        fee_denominator: int = 1000,
        cache: bool = True,
    ):
        if not pool_state.holds_a(token_in):
            raise InvalidConfiguration(
                f"Input token {token_in} is not in the constant-product pair",
                {"token_a0": pool_state.token_a0, "token_a1": pool_state.token_a1},
            )
        if not pool_state.holds_b(token_in):
            raise InvalidConfiguration(
                f"Input token {token_in} is not in the V3 pool",
                {"token_b0": pool_state.token_b0, "token_b1": pool_state.token_b1},
            )

        token_mid = pool_state.other_token_a(token_in)
        if token_mid.lower() != pool_state.other_token_b(token_in).lower():
            raise InvalidConfiguration(
                "Pools do not quote the same pair",
                {
                    "pair_a": (pool_state.token_a0, pool_state.token_a1),
                    "pair_b": (pool_state.token_b0, pool_state.token_b1),
                },
            )

        reserve0, reserve1 = pool_state.reserves_a
        if reserve0 <= 0 or reserve1 <= 0:
            raise InvalidReserves(
                f"Constant-product pool has a non-positive reserve: {pool_state.reserves_a}",
                reserve_in=reserve0,
                reserve_out=reserve1,
            )

        self.pool_state = pool_state
        self.gateway = gateway
        self.token_in = token_in
        self.token_mid = token_mid
        self.fee_tier = fee_tier
        self.fee_numerator = fee_numerator
        self.fee_denominator = fee_denominator
        self.cache_enabled = cache

        self._cache: Dict[Tuple[int, Direction], int] = {}
        self.evaluation_count = 0
        self.cache_hits = 0

    def spot_prices(self) -> Tuple:
        """Return (v2_price, v3_price), both in input-token per mid-token."""
        price_a = spot_price(
            self.pool_state.reserves_a, self.pool_state.token_a0, self.token_in
        )
        price_b = spot_price_from_sqrt(
            self.pool_state.sqrt_price_b, self.pool_state.token_b0, self.token_in
        )
        return price_a, price_b

    def choose_direction(self) -> Optional[Direction]:
        """
        Pick the trade direction from the two spot prices.

        Buying the mid token where it is cheaper comes first. Returns None
        when the prices are equal (no arbitrage to search for).
        """
        price_a, price_b = self.spot_prices()
        logger.debug(f"Spot prices: v2={price_a} v3={price_b}")

        if price_a == price_b:
            return None
        return Direction.A_TO_B if price_a < price_b else Direction.B_TO_A

    def _swap_a(self, amount_in: int, token_in: str) -> int:
        reserve_in, reserve_out = self.pool_state.reserves_for(token_in)
        return get_amount_out(
            amount_in,
            reserve_in,
            reserve_out,
            self.fee_numerator,
            self.fee_denominator,
        )

    async def evaluate(self, amount_in: int, direction: Direction) -> int:
        """
        Exact profit (final output minus input) of one round trip of `amount_in`.

        Raises:
            InvalidReserves: If the constant-product leg cannot be priced
            GatewayError: If the quoter call fails or times out
        """
        key = (amount_in, direction)
        if self.cache_enabled and key in self._cache:
            self.cache_hits += 1
            return self._cache[key]

        if direction is Direction.A_TO_B:
            mid = self._swap_a(amount_in, self.token_in)
            amount_out = await self.gateway.quote_exact_input(
                mid, self.token_mid, self.token_in, self.fee_tier
            )
        else:
            mid = await self.gateway.quote_exact_input(
                amount_in, self.token_in, self.token_mid, self.fee_tier
            )
            amount_out = self._swap_a(mid, self.token_mid)

        self.evaluation_count += 1
        profit = amount_out - amount_in

        if self.cache_enabled:
            self._cache[key] = profit
        return profit
