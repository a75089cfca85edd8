"""
Configuration loading and validation for the V2/V3 arbitrage sizer.
"""

import os
from typing import Any, Dict, Optional

import yaml

from arb_sizer.exceptions import InvalidConfiguration
from arb_sizer.search import STRATEGIES, SearchParams
from arb_sizer.utils import to_base_units

from .adapters.v2 import fee_fraction_from_bps
from .adapters.v3 import V3_FEE_TIERS


class ArbConfig:
    """
    Parsed and validated configuration for one V2/V3 pool pair.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint (inline, or read from rpc_url_env)
        v2_pool: Address of the constant-product pair
        v3_pool: Address of the concentrated-liquidity pool
        quoter: Address of the QuoterV2 contract
        token_in: Address of the token the arbitrage starts and ends in
        token_decimals: Decimals of token_in
        v2_fee_bps: Fee of the constant-product pair in bps (30 = 0.3%)
        v3_fee_tier: Fee tier of the V3 pool (3000 = 0.3%)
        min_amount / max_amount / step: Search domain in whole tokens
        decay_percent: Step decay applied when a best range is found
        strategy: "adaptive" or "bisection"
        max_evaluations: Hard cap on quoter-backed evaluations per run
        cache: Memoize evaluations by amount
        timeout_sec: Per-call quoter timeout
        max_retries: Quoter attempts on rate limit errors
    """

    def __init__(self, config_dict: Dict[str, Any], env: Optional[Dict[str, str]] = None):
        """
        Parse and validate config from dictionary.

        Args:
            config_dict: Loaded YAML config
            env: Environment used to resolve rpc_url_env (defaults to os.environ)

        Raises:
            InvalidConfiguration: If required fields are missing or invalid
        """
        env = os.environ if env is None else env

        # RPC
        self.rpc_url: str = self._resolve_rpc_url(config_dict, env)

        # Pools and tokens
        self.v2_pool: str = self._get_required(config_dict, "v2_pool", str)
        self.v3_pool: str = self._get_required(config_dict, "v3_pool", str)
        self.quoter: str = self._get_required(config_dict, "quoter", str)
        self.token_in: str = self._get_required(config_dict, "token_in", str)
        self.token_decimals: int = int(config_dict.get("token_decimals", 18))

        self.v2_fee_bps: int = int(config_dict.get("v2_fee_bps", 30))
        self.v3_fee_tier: int = int(config_dict.get("v3_fee_tier", 3000))
        if not 0 <= self.v2_fee_bps < 10000:
            raise InvalidConfiguration(
                f"v2_fee_bps must be in [0, 10000), got {self.v2_fee_bps}"
            )
        if self.v3_fee_tier not in V3_FEE_TIERS.values():
            raise InvalidConfiguration(
                f"v3_fee_tier must be one of {sorted(V3_FEE_TIERS.values())}, "
                f"got {self.v3_fee_tier}"
            )

        # Search parameters (whole-token amounts, converted in search_params())
        search = config_dict.get("search", {}) or {}
        if not isinstance(search, dict):
            raise InvalidConfiguration("search section must be a dict")
        self.min_amount = str(search.get("min_amount", 10000))
        self.max_amount = str(search.get("max_amount", 5000000))
        self.step = str(search.get("step", 10000))
        self.decay_percent: int = int(search.get("decay_percent", 10))
        self.strategy: str = search.get("strategy", "adaptive")
        self.max_evaluations: int = int(search.get("max_evaluations", 10000))
        self.cache: bool = bool(search.get("cache", True))

        if self.strategy not in STRATEGIES:
            raise InvalidConfiguration(
                f"Unknown search strategy '{self.strategy}' "
                f"(must be one of {sorted(STRATEGIES)})"
            )

        # Quoter gateway
        gateway = config_dict.get("gateway", {}) or {}
        if not isinstance(gateway, dict):
            raise InvalidConfiguration("gateway section must be a dict")
        self.timeout_sec: float = float(gateway.get("timeout_sec", 10.0))
        self.max_retries: int = int(gateway.get("max_retries", 3))
        if self.timeout_sec <= 0:
            raise InvalidConfiguration(
                f"gateway.timeout_sec must be positive, got {self.timeout_sec}"
            )
        if self.max_retries < 1:
            raise InvalidConfiguration(
                f"gateway.max_retries must be at least 1, got {self.max_retries}"
            )

        # Fail before any RPC if the search domain is invalid
        self.search_params()

    @staticmethod
    def _get_required(d: Dict, key: str, expected_type: type) -> Any:
        """Get required config field with type validation."""
        if key not in d:
            raise InvalidConfiguration(f"Missing required config field: {key}")
        val = d[key]
        if not isinstance(val, expected_type):
            raise InvalidConfiguration(
                f"Config field '{key}' must be {expected_type.__name__}, got {type(val).__name__}"
            )
        return val

    @staticmethod
    def _resolve_rpc_url(d: Dict[str, Any], env: Dict[str, str]) -> str:
        """Inline rpc_url wins; otherwise read the variable named by rpc_url_env."""
        rpc_url = d.get("rpc_url")
        if rpc_url:
            return str(rpc_url)

        env_name = d.get("rpc_url_env", "RPC_URL")
        rpc_url = env.get(env_name)
        if not rpc_url:
            raise InvalidConfiguration(
                f"No rpc_url in config and environment variable {env_name} is not set"
            )
        return rpc_url

    @property
    def fee_fraction(self):
        """(numerator, denominator) of the constant-product fee."""
        return fee_fraction_from_bps(self.v2_fee_bps)

    def search_params(self) -> SearchParams:
        """
        Build the validated search value object in base units.

        Raises:
            InvalidConfiguration: If amounts are malformed or the domain is invalid
        """
        try:
            min_amount = to_base_units(self.min_amount, self.token_decimals)
            max_amount = to_base_units(self.max_amount, self.token_decimals)
            step = to_base_units(self.step, self.token_decimals)
        except (ArithmeticError, ValueError) as e:
            raise InvalidConfiguration(f"Invalid search amount: {e}") from e

        return SearchParams(
            min_amount=min_amount,
            max_amount=max_amount,
            initial_step=step,
            decay_percent=self.decay_percent,
            max_evaluations=self.max_evaluations,
            decimals=self.token_decimals,
        )


def load_config(config_path: str, env: Optional[Dict[str, str]] = None) -> ArbConfig:
    """
    Load and validate config from YAML file.

    Args:
        config_path: Path to config YAML file
        env: Environment used to resolve rpc_url_env

    Returns:
        Validated ArbConfig instance

    Raises:
        InvalidConfiguration: If config invalid, unparsable or file not found
    """
    if not os.path.exists(config_path):
        raise InvalidConfiguration(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"Failed to parse YAML: {e}") from e

    if not isinstance(config_dict, dict):
        raise InvalidConfiguration("Config file must contain a YAML dictionary")

    return ArbConfig(config_dict, env=env)
