"""
Exception hierarchy for the arbitrage sizer.

Provides specific exception types for the failure categories of a search run
so callers can tell a bad configuration from a degenerate pool or a failed
quoter call.
"""

from typing import Any, Dict, Optional


class ArbSizerError(Exception):
    """Base exception for all arbitrage sizer errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidConfiguration(ArbSizerError):
    """Raised when search or pool configuration is rejected before the first evaluation."""

    pass


class InvalidReserves(ArbSizerError):
    """Raised when a constant-product pool has a zero or negative reserve."""

    def __init__(
        self,
        message: str,
        reserve_in: Optional[int] = None,
        reserve_out: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.reserve_in = reserve_in
        self.reserve_out = reserve_out


class GatewayError(ArbSizerError):
    """Raised when a remote quote call fails."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        attempts: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.attempts = attempts


class GatewayTimeout(GatewayError):
    """Raised when a remote quote call exceeds its timeout."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, endpoint=endpoint, details=details)
        self.timeout = timeout


class PoolFetchError(ArbSizerError):
    """Raised when the pool state snapshot cannot be read from the node."""

    def __init__(
        self,
        message: str,
        pool: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool = pool
