"""
Constant-product pool tracking and arbitrage discovery.

Bootstrap from factory contracts, keep reserves current from Swap events,
and recompute direct and triangular opportunities around each change.
"""

from .arbitrage import ArbitrageEngine, FeeTable
from .bootstrap import BootstrapScanner
from .config import ExchangeConfig, ScannerConfig, load_config
from .opportunity_book import OpportunityBook
from .recompute import EventRecomputeDriver, PoolState
from .registry import PoolRegistry, pair_key
from .types import OpportunityRecord, Pool

__all__ = [
    "ArbitrageEngine",
    "BootstrapScanner",
    "EventRecomputeDriver",
    "ExchangeConfig",
    "FeeTable",
    "OpportunityBook",
    "OpportunityRecord",
    "Pool",
    "PoolRegistry",
    "PoolState",
    "ScannerConfig",
    "load_config",
    "pair_key",
]
