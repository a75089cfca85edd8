"""
Core data types for the V2/V3 arbitrage sizer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Direction(Enum):
    """
    Which pool the input token is sold into first.

    A is the constant-product (V2) pair, B the concentrated-liquidity (V3) pool.
    """

    A_TO_B = "v2 -> v3"
    B_TO_A = "v3 -> v2"

    @property
    def label(self) -> str:
        return self.value


@dataclass(frozen=True)
class PoolState:
    """
    One-shot snapshot of both pools, treated as immutable for a search run.

    Attributes:
        reserves_a: (reserve0, reserve1) of the constant-product pair
        token_a0: Checksum address of the pair's token0
        token_a1: Checksum address of the pair's token1
        sqrt_price_b: sqrtPriceX96 of the concentrated-liquidity pool
        token_b0: Checksum address of the V3 pool's token0
        token_b1: Checksum address of the V3 pool's token1
        block_number: Block the snapshot was read at (0 when unknown)
    """

    reserves_a: Tuple[int, int]
    token_a0: str
    token_a1: str
    sqrt_price_b: int
    token_b0: str
    token_b1: str
    block_number: int = 0

    def other_token_a(self, token: str) -> str:
        """Return the constant-product pair's token that is not `token`."""
        return self.token_a1 if _same(self.token_a0, token) else self.token_a0

    def other_token_b(self, token: str) -> str:
        """Return the V3 pool's token that is not `token`."""
        return self.token_b1 if _same(self.token_b0, token) else self.token_b0

    def reserves_for(self, token_in: str) -> Tuple[int, int]:
        """Return (reserve_in, reserve_out) of the pair for a swap selling `token_in`."""
        r0, r1 = self.reserves_a
        if _same(self.token_a0, token_in):
            return r0, r1
        return r1, r0

    def holds_a(self, token: str) -> bool:
        return _same(self.token_a0, token) or _same(self.token_a1, token)

    def holds_b(self, token: str) -> bool:
        return _same(self.token_b0, token) or _same(self.token_b1, token)


def _same(addr_a: str, addr_b: str) -> bool:
    return addr_a.lower() == addr_b.lower()
