"""
DEX adapter modules for different AMM types.
"""

from .v2 import (
    fetch_pair_at,
    fetch_pair_count,
    fetch_pair_tokens,
    fetch_pool_state,
    fetch_reserves,
    fetch_token_decimals,
)

__all__ = [
    "fetch_reserves",
    "fetch_pair_tokens",
    "fetch_pool_state",
    "fetch_pair_count",
    "fetch_pair_at",
    "fetch_token_decimals",
]
