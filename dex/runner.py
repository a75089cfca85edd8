"""
V2/V3 arbitrage sizer runner.

Connects to the chain, takes one snapshot of both pools, searches for the
most profitable trade size and prints the result in a console-friendly
format.
"""

import asyncio
import logging
from typing import Dict, Optional

from web3 import Web3

from arb_sizer.evaluator import ProfitEvaluator
from arb_sizer.exceptions import PoolFetchError
from arb_sizer.search import (
    SearchEngine,
    SearchResult,
    get_strategy,
    search_both_directions,
)
from arb_sizer.utils import format_amount, format_duration

from .adapters import v2, v3
from .config import ArbConfig
from .types import Direction, PoolState

logger = logging.getLogger(__name__)


# ANSI color codes for pretty output
class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"


# The HTTP read timeout must outlast the quoter wait_for timeout
PROVIDER_TIMEOUT_MARGIN_SEC = 5.0

CHAIN_NAMES = {
    1: "Ethereum Mainnet",
    11155111: "Sepolia",
    8453: "Base",
    42161: "Arbitrum",
    10: "Optimism",
    137: "Polygon",
    56: "BSC",
}


class SizerRunner:
    """
    Wires config, web3, pool snapshot, quoter gateway and search engine.

    The pool snapshot is fetched once; the search prices every candidate
    against it, so a long search works on increasingly stale reserves.
    """

    def __init__(self, config: ArbConfig, quiet: bool = False):
        self.config = config
        self.quiet = quiet
        self.web3: Optional[Web3] = None
        self.pool_state: Optional[PoolState] = None
        self.gateway: Optional[v3.QuoterGateway] = None

    def connect(self) -> None:
        """
        Connect to the configured RPC and check it answers.

        Raises:
            ConnectionError: If the endpoint cannot be queried
        """
        rpc_url = self.config.rpc_url
        if not rpc_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid RPC URL format: {rpc_url}")

        logger.info(f"Connecting to RPC: {rpc_url}")
        self.web3 = Web3(
            Web3.HTTPProvider(
                rpc_url,
                request_kwargs={
                    "timeout": self.config.timeout_sec + PROVIDER_TIMEOUT_MARGIN_SEC
                },
            )
        )

        try:
            # Verify we can query the chain (skip is_connected() as it's unreliable)
            chain_id = self.web3.eth.chain_id
            block = self.web3.eth.block_number
        except Exception as e:
            raise ConnectionError(f"Failed to connect to RPC at {rpc_url}: {e}") from e

        chain_name = CHAIN_NAMES.get(chain_id, f"Chain {chain_id}")
        logger.info(f"✓ Connected to {chain_name} (block #{block:,})")

        self.gateway = v3.QuoterGateway(
            self.web3,
            Web3.to_checksum_address(self.config.quoter),
            timeout=self.config.timeout_sec,
            max_retries=self.config.max_retries,
        )

    def fetch_pool_state(self) -> PoolState:
        """
        Take the one-shot snapshot of both pools.

        Raises:
            PoolFetchError: If either pool cannot be read
        """
        if self.web3 is None:
            raise RuntimeError("connect() must be called before fetch_pool_state()")

        v2_addr = Web3.to_checksum_address(self.config.v2_pool)
        v3_addr = Web3.to_checksum_address(self.config.v3_pool)

        token_a0, token_a1, reserve0, reserve1 = v2.fetch_pool(
            self.web3, v2_addr, max_retries=self.config.max_retries
        )
        token_b0, token_b1, sqrt_price = v3.fetch_pool(self.web3, v3_addr)

        try:
            block_number = self.web3.eth.block_number
        except Exception as e:
            raise PoolFetchError(f"Failed to read block number: {e}") from e

        self.pool_state = PoolState(
            reserves_a=(reserve0, reserve1),
            token_a0=token_a0,
            token_a1=token_a1,
            sqrt_price_b=sqrt_price,
            token_b0=token_b0,
            token_b1=token_b1,
            block_number=block_number,
        )
        logger.info(
            f"Snapshot at block #{block_number:,}: v2 reserves=({reserve0}, {reserve1}), "
            f"v3 sqrtPriceX96={sqrt_price}"
        )
        return self.pool_state

    def build_evaluator(self) -> ProfitEvaluator:
        """Create a fresh evaluator over the current snapshot."""
        if self.pool_state is None or self.gateway is None:
            raise RuntimeError("connect() and fetch_pool_state() must be called first")

        fee_numerator, fee_denominator = self.config.fee_fraction
        return ProfitEvaluator(
            self.pool_state,
            self.gateway,
            Web3.to_checksum_address(self.config.token_in),
            fee_tier=self.config.v3_fee_tier,
            fee_numerator=fee_numerator,
            fee_denominator=fee_denominator,
            cache=self.config.cache,
        )

    async def search(
        self, both_directions: bool = False, best_effort: bool = False
    ) -> Dict[Optional[Direction], SearchResult]:
        """Run the configured search and return results keyed by direction."""
        params = self.config.search_params()

        if both_directions:
            return await search_both_directions(
                self.build_evaluator,
                params,
                strategy_name=self.config.strategy,
                best_effort=best_effort,
            )

        engine = SearchEngine(
            self.build_evaluator(), params, get_strategy(self.config.strategy)
        )
        result = await engine.run(best_effort=best_effort)
        return {result.direction: result}

    def run(self, both_directions: bool = False, best_effort: bool = False) -> Dict:
        """Blocking entry point: search, print the report, return the results."""
        if not self.quiet:
            self.print_banner()
        results = asyncio.run(
            self.search(both_directions=both_directions, best_effort=best_effort)
        )
        for result in results.values():
            self.print_result(result)
        return results

    def print_banner(self) -> None:
        """Print startup banner with config summary."""
        cfg = self.config
        c = Colors

        print(f"\n{c.CYAN}{c.BOLD}{'═' * 80}{c.RESET}")
        print(
            f"{c.CYAN}{c.BOLD}  V2/V3 ARBITRAGE SIZER {c.RESET}{c.CYAN}- "
            f"Optimal Trade Size Search{c.RESET}"
        )
        print(f"{c.CYAN}{'═' * 80}{c.RESET}\n")

        print(f"  {c.BOLD}Configuration:{c.RESET}")
        print(
            f"    {c.DIM}V2 pair:{c.RESET} {cfg.v2_pool} "
            f"{c.DIM}({cfg.v2_fee_bps} bps){c.RESET}"
        )
        print(
            f"    {c.DIM}V3 pool:{c.RESET} {cfg.v3_pool} "
            f"{c.DIM}(fee tier {cfg.v3_fee_tier}){c.RESET}"
        )
        print(
            f"    {c.DIM}Domain:{c.RESET} {c.GREEN}{cfg.min_amount} - {cfg.max_amount}{c.RESET} | "
            f"{c.DIM}Step:{c.RESET} {c.GREEN}{cfg.step}{c.RESET} | "
            f"{c.DIM}Decay:{c.RESET} {c.GREEN}{cfg.decay_percent}%{c.RESET} | "
            f"{c.DIM}Strategy:{c.RESET} {c.GREEN}{cfg.strategy}{c.RESET}"
        )
        print(f"\n{c.CYAN}{'═' * 80}{c.RESET}\n")

    def print_result(self, result: SearchResult) -> None:
        """Print one search result."""
        c = Colors
        decimals = self.config.token_decimals
        direction = result.direction.label if result.direction else "-"

        if not result.complete:
            print(
                f"  {c.YELLOW}⚠️  [{direction}] Run incomplete: {result.error}{c.RESET}"
            )
            if result.best_amount_in is not None:
                print(
                    f"    {c.DIM}Best known (not final):{c.RESET} "
                    f"profit {format_amount(result.best_profit, decimals, places=2)} "
                    f"at {format_amount(result.best_amount_in, decimals)}"
                )
        elif result.best_amount_in is None:
            print(
                f"  {c.YELLOW}⚠️  [{direction}] No opportunity for arbitrage "
                f"({result.termination_reason.value}){c.RESET}"
            )
        else:
            print(
                f"  {c.GREEN}✅ [{direction}] Potential profit: "
                f"{format_amount(result.best_profit, decimals, places=2)} "
                f"with amount in: {format_amount(result.best_amount_in, decimals)}{c.RESET}"
            )

        print(
            f"    {c.DIM}Termination:{c.RESET} {result.termination_reason.value} | "
            f"{c.DIM}Evaluations:{c.RESET} {result.evaluation_count} "
            f"({result.cache_hits} cached) | "
            f"{c.DIM}Time:{c.RESET} {format_duration(result.elapsed_time)}"
        )
