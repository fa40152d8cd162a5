"""
Pool Arbitrage Scanner.

Resilient chain-data layer for tracking constant-product liquidity pools
across decentralized exchanges: endpoint rotation, subscription replay,
token price lookup and the shared error taxonomy.
"""

from pool_arbitrage.version import __version__

PROJECT_NAME = "Pool-Arbitrage-Scanner"
VERSION = __version__

from pool_arbitrage.exceptions import (
    AllEndpointsExhausted,
    ConfigError,
    DecodeOrReadFailure,
    EndpointUnavailable,
    PoolArbitrageError,
    UnknownPool,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "PoolArbitrageError",
    "ConfigError",
    "EndpointUnavailable",
    "AllEndpointsExhausted",
    "DecodeOrReadFailure",
    "UnknownPool",
]
