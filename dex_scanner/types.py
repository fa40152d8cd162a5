"""
Core data types for pool tracking and opportunity records.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

from pool_arbitrage.utils import (
    format_profit,
    get_current_timestamp,
    normalize_address,
    short_address,
    timestamp_to_iso,
)

OpportunityKind = Literal["direct", "triangular"]
OpportunitySource = Literal["bootstrap", "swap_event", "rescan"]


@dataclass
class Pool:
    """
    A constant-product liquidity pool tracked by the registry.

    Attributes:
        dex: Exchange name (e.g., "QuickSwapV2")
        address: Pair contract address, lower-cased (unique key)
        token0: Address of token0, lower-cased
        token1: Address of token1, lower-cased
        reserve0: Raw on-chain reserve of token0 (base units)
        reserve1: Raw on-chain reserve of token1 (base units)
        updated_at: Local wall-clock time of the last reserve write
        block_timestamp_last: blockTimestampLast reported by getReserves
        version: Incremented on every accepted reserve write
        liquidity_usd: USD value of both reserves when last gated
    """

    dex: str
    address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    updated_at: float = field(default_factory=get_current_timestamp)
    block_timestamp_last: int = 0
    version: int = 0
    liquidity_usd: float = 0.0

    def __post_init__(self):
        self.address = normalize_address(self.address)
        self.token0 = normalize_address(self.token0)
        self.token1 = normalize_address(self.token1)

    def other_token(self, token: str) -> Optional[str]:
        """The token on the other side of the pool, or None if token isn't in it."""
        token = normalize_address(token)
        if token == self.token0:
            return self.token1
        if token == self.token1:
            return self.token0
        return None

    def __str__(self) -> str:
        return (
            f"{self.dex} {short_address(self.address)} "
            f"({short_address(self.token0)}/{short_address(self.token1)})"
        )


@dataclass(frozen=True)
class OpportunityRecord:
    """
    Immutable description of an arbitrage opportunity.

    Direct records have a two-token route and two pools. Triangular records
    have a closed four-token route (A -> B -> C -> A) and three pools.
    """

    kind: OpportunityKind
    route: Tuple[str, ...]
    pools: Tuple[str, ...]
    dexes: Tuple[str, ...]
    edge: float
    est_profit_usd: float
    timestamp: float = field(default_factory=get_current_timestamp)
    source: OpportunitySource = "bootstrap"
    prices: Tuple[float, ...] = ()
    cycle_rate: Optional[float] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def route_key(self) -> str:
        """Identifies the same route across records, regardless of id."""
        return f"{self.kind}:{'>'.join(self.route)}|{','.join(self.pools)}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind,
            "route": list(self.route),
            "pools": list(self.pools),
            "dexs": list(self.dexes),
            "edge": self.edge,
            "estProfitUSD": self.est_profit_usd,
            "timestamp": self.timestamp,
            "time": timestamp_to_iso(self.timestamp),
            "source": self.source,
        }
        if self.kind == "direct" and len(self.prices) == 2:
            data["priceA"], data["priceB"] = self.prices
        if self.cycle_rate is not None:
            data["cycleRate"] = self.cycle_rate
        if self.tx_hash is not None:
            data["txHash"] = self.tx_hash
        if self.block_number is not None:
            data["blockNumber"] = self.block_number
        return data

    def format_log(self) -> str:
        """Format for console logging."""
        marker = "🔺" if self.kind == "triangular" else "🔁"
        route = " -> ".join(short_address(t) for t in self.route)
        line = (
            f"{marker} {self.kind.upper()} {route} | dexs={' > '.join(self.dexes)} | "
            f"edge={format_profit(self.edge)} est=${self.est_profit_usd:.2f}"
        )
        if self.tx_hash:
            line += f" | tx={self.tx_hash}"
        return line
