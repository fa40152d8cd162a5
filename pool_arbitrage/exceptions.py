"""
Exception hierarchy for the pool arbitrage scanner.

Network-layer errors are recovered locally by endpoint rotation; data-layer
errors are isolated to a single pool or pair. Configuration errors skip the
affected exchange at bootstrap.
"""

from typing import Any, Dict, Optional


class PoolArbitrageError(Exception):
    """Base exception for all pool arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigError(PoolArbitrageError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        exchange: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.exchange = exchange


class NetworkError(PoolArbitrageError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        pool: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.pool = pool


class EndpointUnavailable(NetworkError):
    """A call failed against the active endpoint and against its retry."""

    pass


class AllEndpointsExhausted(EndpointUnavailable):
    """Every endpoint of an endpoint pool failed since the last success."""

    pass


class DataError(PoolArbitrageError):
    """Raised when on-chain data cannot be used."""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.address = address


class DecodeOrReadFailure(DataError):
    """A contract read reverted or returned data that could not be decoded."""

    pass


class UnknownPool(DataError):
    """A refresh was requested for an address the registry does not track."""

    pass
