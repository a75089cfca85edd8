"""
DEX adapter modules for different AMM types.
"""

from .v2 import fee_fraction_from_bps, get_amount_out, spot_price
from .v3 import QuoteGateway, QuoterGateway, spot_price_from_sqrt

__all__ = [
    "get_amount_out",
    "fee_fraction_from_bps",
    "spot_price",
    "spot_price_from_sqrt",
    "QuoteGateway",
    "QuoterGateway",
]
