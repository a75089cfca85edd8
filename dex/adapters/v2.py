"""
Uniswap V2 style adapter for constant-product AMM pools.

Implements reserve fetching, swap simulation using the x*y=k formula with the
fee taken from the input, and a spot-price estimate for direction selection.
All swap math is exact integer arithmetic, matching the pair contract.
"""

import time
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Tuple

from web3 import Web3

from arb_sizer.exceptions import InvalidReserves, PoolFetchError

from ..abi import UNISWAP_V2_PAIR_ABI

# Fixed-point precision used for the reserve ratio (1e18)
PRICE_PRECISION = 10**18

# Spot prices are only compared, never used for profit, so 8 places suffice
PRICE_PLACES = Decimal("0.00000001")


def is_rate_limit_error(error_msg: str) -> bool:
    return (
        "429" in error_msg
        or "Too Many Requests" in error_msg
        or "-32005" in error_msg  # BSC/Ethereum rate limit code
        or "limit exceeded" in error_msg.lower()
    )


def fetch_pool(
    web3: Web3, pair_addr: str, max_retries: int = 3
) -> Tuple[str, str, int, int]:
    """
    Fetch token addresses and reserves from a Uniswap V2 style pair.

    Args:
        web3: Web3 instance connected to the chain
        pair_addr: Checksummed address of the pair contract
        max_retries: Maximum number of retry attempts (default: 3)

    Returns:
        Tuple of (token0_addr, token1_addr, reserve0, reserve1)

    Raises:
        PoolFetchError: If RPC calls fail after all retries
        ValueError: If pair address is invalid
    """
    if not Web3.is_checksum_address(pair_addr):
        raise ValueError(f"Invalid pair address: {pair_addr}")

    pair = web3.eth.contract(address=pair_addr, abi=UNISWAP_V2_PAIR_ABI)

    last_error = None
    for attempt in range(max_retries):
        try:
            token0 = pair.functions.token0().call()
            token1 = pair.functions.token1().call()
            reserves = pair.functions.getReserves().call()

            return (
                Web3.to_checksum_address(token0),
                Web3.to_checksum_address(token1),
                int(reserves[0]),
                int(reserves[1]),
            )
        except Exception as e:
            last_error = e
            if is_rate_limit_error(str(e)) and attempt < max_retries - 1:
                # Exponential backoff: 1s, 2s, 4s
                time.sleep(2**attempt)
                continue
            raise PoolFetchError(
                f"Failed to fetch pool {pair_addr}: {e}", pool=pair_addr
            ) from e

    raise PoolFetchError(
        f"Failed to fetch pool {pair_addr} after {max_retries} retries: {last_error}",
        pool=pair_addr,
    ) from last_error


def get_amount_out(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = 997,
    fee_denominator: int = 1000,
) -> int:
    """
    Calculate output amount for a V2 swap using the constant-product formula.

    Formula (with fee embedded, integer division truncating like the pair contract):
        amountInWithFee = amountIn * feeNumerator
        amountOut = amountInWithFee * reserveOut / (reserveIn * feeDenominator + amountInWithFee)

    Args:
        amount_in: Input token amount in base units
        reserve_in: Reserve of input token
        reserve_out: Reserve of output token
        fee_numerator: Fraction of the input kept after fees (997 for 0.3%)
        fee_denominator: Denominator of the fee fraction

    Returns:
        Output token amount in base units (always < reserve_out)

    Raises:
        InvalidReserves: If either reserve is zero or negative
        ValueError: If amount_in is negative or the fee fraction is invalid
    """
    if reserve_in <= 0 or reserve_out <= 0:
        raise InvalidReserves(
            f"Reserves must be positive: in={reserve_in}, out={reserve_out}",
            reserve_in=reserve_in,
            reserve_out=reserve_out,
        )
    if amount_in < 0:
        raise ValueError(f"amount_in must be non-negative: {amount_in}")
    if fee_denominator <= 0 or not 0 < fee_numerator <= fee_denominator:
        raise ValueError(f"Invalid fee fraction: {fee_numerator}/{fee_denominator}")

    amount_in_with_fee = amount_in * fee_numerator
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * fee_denominator + amount_in_with_fee

    return numerator // denominator


def fee_fraction_from_bps(fee_bps: int) -> Tuple[int, int]:
    """
    Convert a pool fee in basis points to (numerator, denominator).

    30 bps -> (9970, 10000), which prices identically to 997/1000.
    """
    if not 0 <= fee_bps < 10000:
        raise ValueError(f"fee_bps must be in [0, 10000): {fee_bps}")
    return 10000 - fee_bps, 10000


def spot_price(reserves: Tuple[int, int], token0: str, quote_token: str) -> Decimal:
    """
    Spot price of the pair's other token, expressed in `quote_token`.

    Computed as quote reserve / other reserve with 1e18 integer precision,
    then rounded to 8 places. Used only to choose the trade direction.

    Raises:
        InvalidReserves: If either reserve is zero or negative
    """
    r0, r1 = reserves
    if r0 <= 0 or r1 <= 0:
        raise InvalidReserves(
            f"Reserves must be positive: r0={r0}, r1={r1}",
            reserve_in=r0,
            reserve_out=r1,
        )

    if token0.lower() == quote_token.lower():
        quote_reserve, other_reserve = r0, r1
    else:
        quote_reserve, other_reserve = r1, r0

    price = quote_reserve * PRICE_PRECISION // other_reserve

    with localcontext() as ctx:
        ctx.prec = 96
        return (Decimal(price) / Decimal(PRICE_PRECISION)).quantize(
            PRICE_PLACES, rounding=ROUND_HALF_UP
        )
