"""
V2/V3 arbitrage sizer.

Searches for the trade size that maximizes the theoretical profit of an
arbitrage between a constant-product pool and a concentrated-liquidity pool
quoting the same pair.
"""

from arb_sizer.version import __version__

PROJECT_NAME = "v2v3-arb-sizer"

__all__ = ["PROJECT_NAME", "__version__"]
