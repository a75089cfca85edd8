"""
Common helpers for the arbitrage sizer.

Unit conversion between human amounts and integer base units, duration
formatting, and structured logger construction.
"""

import logging
from decimal import Decimal, localcontext
from typing import Any, Dict, Optional, Union

# Enough digits for uint256 values expressed with 18 decimals
_DECIMAL_PRECISION = 96


# Unit utilities
def to_base_units(value: Union[int, str, Decimal], decimals: int = 18) -> int:
    """
    Convert a human-readable amount to integer base units.

    Args:
        value: Amount in whole tokens (e.g. "10000" or Decimal("0.5"))
        decimals: Token decimals

    Returns:
        Amount in the token's smallest unit

    Raises:
        ValueError: If the value has more fractional digits than the token supports
    """
    if isinstance(value, float):
        value = str(value)
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = Decimal(value) * (Decimal(10) ** decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"Amount {value} has more than {decimals} fractional digits"
            )
        return int(scaled)


def from_base_units(amount: int, decimals: int = 18) -> Decimal:
    """Convert integer base units to a Decimal amount in whole tokens."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return Decimal(amount) / (Decimal(10) ** decimals)


def format_amount(amount: int, decimals: int = 18, places: int = 8) -> str:
    """Format base units as a fixed-point string (e.g. '10000.00000000')."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        quantum = Decimal(1).scaleb(-places)
        return str(from_base_units(amount, decimals).quantize(quantum))


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
) -> logging.Logger:
    """
    Get a logger with consistent formatting and optional extra context.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages

    Returns:
        Configured logger (a LoggerAdapter when extra context is given)
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    # Only attach a handler when nothing upstream will print for us
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        format_str = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
        handler.setFormatter(logging.Formatter(format_str, datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    if extra:
        return logging.LoggerAdapter(logger, dict(extra))

    return logger
