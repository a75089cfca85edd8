"""
Uniswap V3 style adapter for concentrated-liquidity pools.

V3 output for a given input cannot be computed from reserves, so exact
amounts come from the Quoter contract. This module reads the pool's slot0
price for the direction estimate and wraps QuoterV2.quoteExactInputSingle
as an awaitable gateway with a timeout and a finite retry policy.
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Optional, Protocol, Tuple

from web3 import Web3

from arb_sizer.exceptions import GatewayError, GatewayTimeout, PoolFetchError

from ..abi import QUOTER_V2_ABI, UNISWAP_V3_POOL_ABI
from .v2 import is_rate_limit_error

logger = logging.getLogger(__name__)

Q96 = 2**96

PRICE_PLACES = Decimal("0.00000001")

# Common V3 fee tiers (in hundredths of a basis point)
V3_FEE_TIERS = {
    "LOWEST": 100,  # 0.01%
    "LOW": 500,  # 0.05%
    "MEDIUM": 3000,  # 0.30%
    "HIGH": 10000,  # 1.00%
}


def spot_price_from_sqrt(
    sqrt_price_x96: int, token0: str, quote_token: str
) -> Decimal:
    """
    Spot price implied by a sqrtPriceX96 value, expressed in `quote_token`.

    (sqrtPriceX96 / 2**96)**2 is the token1-per-token0 price; it is inverted
    when the quote token is token0 so the result matches v2.spot_price.
    Rounded to 8 places. Used only to choose the trade direction.
    """
    if sqrt_price_x96 <= 0:
        raise ValueError(f"sqrt_price_x96 must be positive: {sqrt_price_x96}")

    with localcontext() as ctx:
        ctx.prec = 96
        price = (Decimal(sqrt_price_x96) / Decimal(Q96)) ** 2
        if token0.lower() == quote_token.lower():
            price = Decimal(1) / price
        return price.quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


def fetch_pool(web3: Web3, pool_addr: str) -> Tuple[str, str, int]:
    """
    Fetch token addresses and the current sqrtPriceX96 of a V3 pool.

    Returns:
        Tuple of (token0_addr, token1_addr, sqrt_price_x96)

    Raises:
        PoolFetchError: If any RPC call fails
        ValueError: If pool address is invalid
    """
    if not Web3.is_checksum_address(pool_addr):
        raise ValueError(f"Invalid pool address: {pool_addr}")

    pool = web3.eth.contract(address=pool_addr, abi=UNISWAP_V3_POOL_ABI)
    try:
        slot0 = pool.functions.slot0().call()
        token0 = pool.functions.token0().call()
        token1 = pool.functions.token1().call()
    except Exception as e:
        raise PoolFetchError(f"Failed to fetch V3 pool {pool_addr}: {e}", pool=pool_addr) from e

    return (
        Web3.to_checksum_address(token0),
        Web3.to_checksum_address(token1),
        int(slot0[0]),
    )


class QuoteGateway(Protocol):
    """Anything that can quote an exact-input single-pool swap."""

    async def quote_exact_input(
        self, amount_in: int, token_in: str, token_out: str, fee_tier: int
    ) -> int:
        ...


class QuoterGateway:
    """
    Remote quote gateway backed by Uniswap QuoterV2.

    Each call is one eth_call round trip, bounded by `timeout` seconds. Rate
    limit failures are retried with exponential backoff up to `max_retries`
    attempts; everything else fails immediately.
    """

    def __init__(
        self,
        web3: Web3,
        quoter_addr: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ):
        if not Web3.is_checksum_address(quoter_addr):
            raise ValueError(f"Invalid quoter address: {quoter_addr}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive: {timeout}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1: {max_retries}")

        self.quoter_addr = quoter_addr
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.quoter = web3.eth.contract(address=quoter_addr, abi=QUOTER_V2_ABI)

    def _call(self, amount_in: int, token_in: str, token_out: str, fee_tier: int) -> int:
        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            int(amount_in),
            int(fee_tier),
            0,  # sqrtPriceLimitX96: no limit
        )
        result = self.quoter.functions.quoteExactInputSingle(params).call()
        return int(result[0])

    async def quote_exact_input(
        self, amount_in: int, token_in: str, token_out: str, fee_tier: int
    ) -> int:
        """
        Quote the exact output of swapping `amount_in` of `token_in` for `token_out`.

        Raises:
            GatewayTimeout: If an attempt exceeds the timeout
            GatewayError: If the quoter call fails after all retries
        """
        if amount_in == 0:
            return 0

        loop = asyncio.get_running_loop()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(
                        None, self._call, amount_in, token_in, token_out, fee_tier
                    ),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                raise GatewayTimeout(
                    f"Quoter call timed out after {self.timeout}s "
                    f"(amount_in={amount_in}, {token_in} -> {token_out})",
                    endpoint=self.quoter_addr,
                    timeout=self.timeout,
                ) from e
            except Exception as e:
                last_error = e
                error_msg = str(e)
                if is_rate_limit_error(error_msg) and attempt < self.max_retries - 1:
                    wait_time = self.backoff_base * (2**attempt)
                    logger.debug(
                        f"Quoter rate limited, retrying in {wait_time:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise GatewayError(
                    f"Quoter call failed: {error_msg}",
                    endpoint=self.quoter_addr,
                    attempts=attempt + 1,
                ) from e

        raise GatewayError(
            f"Quoter call failed after {self.max_retries} retries: {last_error}",
            endpoint=self.quoter_addr,
            attempts=self.max_retries,
        ) from last_error
