"""
Arbitrage math and opportunity discovery over the pool registry.

Prices are raw reserve ratios (no decimal normalisation). Edges are
fractions of notional after fees and before execution costs.
"""

import math
from itertools import combinations
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from pool_arbitrage.utils import (
    basis_points_to_decimal,
    get_logger,
    normalize_address,
    safe_ratio,
)

from .registry import PoolRegistry, pair_key
from .types import OpportunityRecord, Pool

logger = get_logger(__name__)

__all__ = [
    "ArbitrageEngine",
    "FeeTable",
    "directional_rate",
    "edge_to_profit",
    "estimate_direct_edge",
    "estimate_triangular_edge",
    "pair_key",
    "spot_price",
]

DEFAULT_FEE_BPS = 30

# Swap fees by exchange name, in basis points
DEX_FEE_BPS: Dict[str, float] = {
    "QuickSwap": 30,
    "QuickSwap V2": 30,
    "QuickSwap V3": 5,
    "SushiSwap": 30,
    "SushiSwap V2": 30,
    "SushiSwap V3": 5,
    "Uniswap": 30,
    "Uniswap V3": 5,
    "DODO": 10,
    "KyberSwap Elastic": 10,
}

Triangle = Tuple[Tuple[str, str, str], Tuple[Pool, Pool, Pool]]


def spot_price(reserve0, reserve1) -> float:
    """Price of token1 in token0 units: reserve0 / reserve1, 0 when unusable."""
    return safe_ratio(reserve0, reserve1)


def directional_rate(pool: Pool, token_in: str) -> float:
    """Units of the other token received per unit of token_in, before fees."""
    if normalize_address(token_in) == pool.token0:
        return safe_ratio(pool.reserve1, pool.reserve0)
    return safe_ratio(pool.reserve0, pool.reserve1)


def estimate_direct_edge(
    price_a: float, price_b: float, fee_a: float = 0.0, fee_b: float = 0.0
) -> float:
    """
    Relative price gap between two venues, net of both swap fees.

    Returns:
        max(|pA - pB| / mid - feeA - feeB, 0); 0 for non-positive prices
    """
    if not (price_a > 0 and price_b > 0):
        return 0.0
    mid = (price_a + price_b) / 2
    edge = abs(price_a - price_b) / mid - fee_a - fee_b
    if not math.isfinite(edge) or edge <= 0:
        return 0.0
    return edge


def estimate_triangular_edge(cycle_rate: float, fees: Iterable[float]) -> float:
    """Compounded three-leg rate above parity, net of the summed leg fees."""
    edge = cycle_rate - 1 - sum(fees)
    if not math.isfinite(edge) or edge <= 0:
        return 0.0
    return edge


def edge_to_profit(edge: float, notional_usd: float) -> float:
    return edge * notional_usd if edge > 0 else 0.0


class FeeTable:
    """Exchange name -> swap fee, with a default for unknown exchanges."""

    def __init__(
        self,
        overrides: Optional[Dict[str, float]] = None,
        default_bps: float = DEFAULT_FEE_BPS,
        include_known: bool = True,
    ):
        self.default_bps = default_bps
        self._bps: Dict[str, float] = {}
        if include_known:
            for name, bps in DEX_FEE_BPS.items():
                self._bps[name.lower()] = bps
        for name, bps in (overrides or {}).items():
            self._bps[name.lower()] = float(bps)

    def fee_bps(self, dex: str) -> float:
        return self._bps.get(str(dex).lower(), self.default_bps)

    def fee_fraction(self, dex: str) -> float:
        return basis_points_to_decimal(self.fee_bps(dex))


class ArbitrageEngine:
    """
    Finds direct and triangular opportunities in a PoolRegistry.

    Engine passes are synchronous; they never await, so a pass sees one
    consistent snapshot of the registry.
    """

    def __init__(
        self,
        fee_table: Optional[FeeTable] = None,
        notional_usd: float = 10000.0,
        min_profit_usd: float = 40.0,
        min_edge: float = 0.0,
        swap_min_edge: Optional[float] = None,
    ):
        self.fee_table = fee_table or FeeTable()
        self.notional_usd = notional_usd
        self.min_profit_usd = min_profit_usd
        self.min_edge = min_edge
        # Swap-led direct records use their own edge threshold
        self.swap_min_edge = min_edge if swap_min_edge is None else swap_min_edge

    # === THRESHOLDS ===

    def qualifies(self, edge: float, min_edge: Optional[float] = None) -> bool:
        threshold = self.min_edge if min_edge is None else min_edge
        if edge <= 0 or edge <= threshold:
            return False
        return edge_to_profit(edge, self.notional_usd) >= self.min_profit_usd

    @staticmethod
    def rank(records: Sequence[OpportunityRecord]) -> List[OpportunityRecord]:
        """Descending estimated profit; ties keep discovery order."""
        return sorted(records, key=lambda r: r.est_profit_usd, reverse=True)

    # === DIRECT ===

    def direct_opportunity(
        self,
        pool_a: Pool,
        pool_b: Pool,
        source: str = "bootstrap",
        min_edge: Optional[float] = None,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> Optional[OpportunityRecord]:
        """Direct record for two pools of the same pair, or None below thresholds."""
        price_a = spot_price(pool_a.reserve0, pool_a.reserve1)
        if pool_b.token0 == pool_a.token0:
            price_b = spot_price(pool_b.reserve0, pool_b.reserve1)
        else:
            price_b = spot_price(pool_b.reserve1, pool_b.reserve0)

        edge = estimate_direct_edge(
            price_a,
            price_b,
            self.fee_table.fee_fraction(pool_a.dex),
            self.fee_table.fee_fraction(pool_b.dex),
        )
        if not self.qualifies(edge, min_edge):
            return None

        return OpportunityRecord(
            kind="direct",
            route=(pool_a.token0, pool_a.token1),
            pools=(pool_a.address, pool_b.address),
            dexes=(pool_a.dex, pool_b.dex),
            edge=edge,
            est_profit_usd=edge_to_profit(edge, self.notional_usd),
            source=source,
            prices=(price_a, price_b),
            tx_hash=tx_hash,
            block_number=block_number,
        )

    # === TRIANGULAR ===

    def triangular_opportunity(
        self,
        route: Tuple[str, str, str],
        pools: Tuple[Pool, Pool, Pool],
        source: str = "bootstrap",
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> Optional[OpportunityRecord]:
        """
        Triangular record for the cycle route[0] -> route[1] -> route[2] -> route[0].

        pools[i] carries the leg starting at route[i].
        """
        rates = tuple(directional_rate(pool, token) for pool, token in zip(pools, route))
        cycle_rate = rates[0] * rates[1] * rates[2]
        edge = estimate_triangular_edge(
            cycle_rate, (self.fee_table.fee_fraction(p.dex) for p in pools)
        )
        if not self.qualifies(edge):
            return None

        return OpportunityRecord(
            kind="triangular",
            route=(route[0], route[1], route[2], route[0]),
            pools=tuple(p.address for p in pools),
            dexes=tuple(p.dex for p in pools),
            edge=edge,
            est_profit_usd=edge_to_profit(edge, self.notional_usd),
            source=source,
            prices=rates,
            cycle_rate=cycle_rate,
            tx_hash=tx_hash,
            block_number=block_number,
        )

    @staticmethod
    def triangles_through(pool: Pool, registry: PoolRegistry) -> Iterator[Triangle]:
        """Every directed triangle that uses pool as its first leg, both orientations."""
        for token_a, token_b in ((pool.token0, pool.token1), (pool.token1, pool.token0)):
            for pool2 in registry.pools_for_token(token_b):
                if pool2.address == pool.address:
                    continue
                token_c = pool2.other_token(token_b)
                if token_c is None or token_c in (token_a, token_b):
                    continue
                for pool3 in registry.pools_for_pair(token_c, token_a):
                    if pool3.address in (pool.address, pool2.address):
                        continue
                    yield (token_a, token_b, token_c), (pool, pool2, pool3)

    @staticmethod
    def _cycle_id(route: Tuple[str, str, str], pools: Tuple[Pool, Pool, Pool]) -> tuple:
        legs = [(token, p.address) for token, p in zip(route, pools)]
        start = min(range(3), key=lambda i: legs[i][1])
        return tuple(legs[start:] + legs[:start])

    # === PASSES ===

    def recompute_around(
        self,
        pool: Pool,
        registry: PoolRegistry,
        source: str = "swap_event",
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> List[OpportunityRecord]:
        """
        Opportunities that involve one pool.

        Covers the pool's pair group (direct) and triangles having the pool
        as a leg. Pools outside those are never read.
        """
        records: List[OpportunityRecord] = []

        for other in registry.pools_for_pair(pool.token0, pool.token1):
            if other.address == pool.address:
                continue
            record = self.direct_opportunity(
                pool,
                other,
                source=source,
                min_edge=self.swap_min_edge,
                tx_hash=tx_hash,
                block_number=block_number,
            )
            if record is not None:
                records.append(record)

        for route, pools in self.triangles_through(pool, registry):
            record = self.triangular_opportunity(
                route, pools, source=source, tx_hash=tx_hash, block_number=block_number
            )
            if record is not None:
                records.append(record)

        return self.rank(records)

    def scan_all(
        self, registry: PoolRegistry, source: str = "bootstrap"
    ) -> List[OpportunityRecord]:
        """Exhaustive pass: every pair group pairwise plus every triangle."""
        direct: List[OpportunityRecord] = []
        for _, group in registry.pair_groups():
            for pool_a, pool_b in combinations(group, 2):
                record = self.direct_opportunity(pool_a, pool_b, source=source)
                if record is not None:
                    direct.append(record)

        triangular: List[OpportunityRecord] = []
        seen: Set[tuple] = set()
        for pool in registry:
            for route, pools in self.triangles_through(pool, registry):
                cycle_id = self._cycle_id(route, pools)
                if cycle_id in seen:
                    continue
                seen.add(cycle_id)
                record = self.triangular_opportunity(route, pools, source=source)
                if record is not None:
                    triangular.append(record)

        logger.info(
            f"🔎 Full scan: {len(direct)} direct, {len(triangular)} triangular "
            f"({len(seen)} cycles checked over {len(registry)} pools)"
        )
        return self.rank(direct + triangular)
