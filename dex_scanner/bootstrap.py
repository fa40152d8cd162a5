"""
Pool discovery from factory contracts.

Enumerates every pair of each configured Uniswap V2 style factory, reads
tokens and reserves, applies the USD liquidity gate, and seeds the
registry. Pools rejected by the gate are remembered and never read again.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set

from web3 import Web3

from pool_arbitrage.exceptions import ConfigError, DataError, NetworkError
from pool_arbitrage.metrics import ScannerMetrics, get_metrics
from pool_arbitrage.rpc import ResilientClient
from pool_arbitrage.utils import get_logger, normalize_address

from .abi import FACTORY_ABIS, REQUIRED_FACTORY_FUNCTIONS, abi_function_names
from .adapters.v2 import (
    fetch_pair_at,
    fetch_pair_count,
    fetch_pool_state,
    fetch_token_decimals,
)
from .arbitrage import ArbitrageEngine
from .config import ExchangeConfig
from .registry import PoolRegistry
from .types import OpportunityRecord, Pool

logger = get_logger(__name__)

DEFAULT_DECIMALS = 18


class PriceLookup(Protocol):
    def get_usd_prices(self, addresses: Iterable[str]) -> Dict[str, float]:
        ...


def resolve_factory_abi(exchange: ExchangeConfig) -> Sequence[dict]:
    """
    Validate an exchange's factory address and ABI.

    Returns:
        The factory ABI to use

    Raises:
        ConfigError: If the factory address or ABI is missing or unusable
    """
    if not exchange.factory or not Web3.is_address(exchange.factory):
        raise ConfigError(
            f"{exchange.name} has no valid factory address ({exchange.factory!r})",
            exchange=exchange.name,
        )

    abi = exchange.abi
    if isinstance(abi, str):
        if abi not in FACTORY_ABIS:
            raise ConfigError(
                f"{exchange.name} references unknown factory ABI '{abi}'",
                exchange=exchange.name,
            )
        abi = FACTORY_ABIS[abi]
    if not abi:
        raise ConfigError(f"{exchange.name} has no factory ABI", exchange=exchange.name)

    missing = [f for f in REQUIRED_FACTORY_FUNCTIONS if f not in abi_function_names(abi)]
    if missing:
        raise ConfigError(
            f"{exchange.name} factory ABI lacks {', '.join(missing)}",
            exchange=exchange.name,
        )
    return abi


def liquidity_usd(
    pool: Pool, prices: Dict[str, float], decimals: Dict[str, int]
) -> float:
    """USD value of both reserves; unpriced tokens count as 0."""
    p0 = prices.get(pool.token0, 0.0) or 0.0
    p1 = prices.get(pool.token1, 0.0) or 0.0
    d0 = decimals.get(pool.token0, DEFAULT_DECIMALS)
    d1 = decimals.get(pool.token1, DEFAULT_DECIMALS)
    return p0 * pool.reserve0 / 10**d0 + p1 * pool.reserve1 / 10**d1


class BootstrapScanner:
    """
    Seeds and periodically refreshes the registry from factory contracts.

    Attributes:
        rejected: Pool addresses that failed the liquidity gate
    """

    def __init__(
        self,
        client: ResilientClient,
        registry: PoolRegistry,
        engine: ArbitrageEngine,
        price_lookup: PriceLookup,
        exchanges: Sequence[ExchangeConfig],
        min_liquidity_usd: float = 50000.0,
        page_size: int = 50,
        page_delay: float = 0.2,
        max_pairs_per_exchange: Optional[int] = None,
        metrics: Optional[ScannerMetrics] = None,
    ):
        self.client = client
        self.registry = registry
        self.engine = engine
        self.price_lookup = price_lookup
        self.exchanges = list(exchanges)
        self.min_liquidity_usd = min_liquidity_usd
        self.page_size = max(1, page_size)
        self.page_delay = page_delay
        self.max_pairs_per_exchange = max_pairs_per_exchange
        self.metrics = metrics or get_metrics()

        self.rejected: Set[str] = set()
        self._decimals_cache: Dict[str, int] = {}
        self.scans_completed = 0

    async def scan(self) -> List[OpportunityRecord]:
        """
        Enumerate all exchanges, gate new pools, refresh known ones, and run
        one exhaustive engine pass.

        Returns:
            Ranked opportunity records from the full pass
        """
        source = "bootstrap" if self.scans_completed == 0 else "rescan"
        logger.info(f"🚀 Starting {source} of {len(self.exchanges)} exchanges")

        discovered: List[Pool] = []
        for i, exchange in enumerate(self.exchanges, 1):
            try:
                abi = resolve_factory_abi(exchange)
            except ConfigError as e:
                logger.warning(f"Skipping {exchange.name}: {e}")
                continue
            logger.info(f"[{i}/{len(self.exchanges)}] Scanning {exchange.name}...")
            discovered.extend(await self.scan_factory(exchange, abi))

        new_pools: List[Pool] = []
        refreshed = 0
        for pool in discovered:
            if pool.address in self.registry:
                if self.registry.refresh_reserves(
                    pool.address, pool.reserve0, pool.reserve1, pool.block_timestamp_last
                ):
                    refreshed += 1
            else:
                new_pools.append(pool)

        for pool in await self.apply_liquidity_gate(new_pools):
            self.registry.upsert_pool(pool)

        self.scans_completed += 1
        self.metrics.update_tracked_pools(len(self.registry))
        logger.info(
            f"✓ {source.capitalize()} complete: {len(self.registry)} pools tracked, "
            f"{refreshed} refreshed, {len(self.rejected)} rejected"
        )

        records = self.engine.scan_all(self.registry, source=source)
        self.metrics.record_opportunities(records, source)
        return records

    async def scan_factory(
        self, exchange: ExchangeConfig, abi: Sequence[dict]
    ) -> List[Pool]:
        """Read every pair of one factory. Pools that fail to read are skipped."""
        try:
            total = await fetch_pair_count(self.client, exchange.factory, abi)
        except (DataError, NetworkError) as e:
            logger.error(f"Failed to get pair count from {exchange.name}: {e}")
            return []

        if self.max_pairs_per_exchange is not None:
            total = min(total, self.max_pairs_per_exchange)
        logger.info(f"{exchange.name}: reading {total} pairs")

        pools: List[Pool] = []
        for start in range(0, total, self.page_size):
            indices = range(start, min(start + self.page_size, total))
            results = await asyncio.gather(
                *(self._scan_pair(exchange, abi, i) for i in indices)
            )
            pools.extend(p for p in results if p is not None)
            if self.page_delay and start + self.page_size < total:
                await asyncio.sleep(self.page_delay)

        logger.info(f"{exchange.name}: {len(pools)}/{total} pairs readable")
        return pools

    async def _scan_pair(
        self, exchange: ExchangeConfig, abi: Sequence[dict], index: int
    ) -> Optional[Pool]:
        try:
            address = await fetch_pair_at(self.client, exchange.factory, index, abi)
            if address in self.rejected:
                return None
            token0, token1, reserve0, reserve1, block_ts = await fetch_pool_state(
                self.client, address
            )
        except (DataError, NetworkError) as e:
            logger.debug(f"Error scanning {exchange.name} pair #{index}: {e}")
            return None

        return Pool(
            dex=exchange.name,
            address=address,
            token0=token0,
            token1=token1,
            reserve0=reserve0,
            reserve1=reserve1,
            block_timestamp_last=block_ts,
        )

    async def apply_liquidity_gate(self, pools: List[Pool]) -> List[Pool]:
        """
        Keep pools whose reserves are worth at least min_liquidity_usd.

        Rejected addresses are added to self.rejected.
        """
        if not pools:
            return []

        tokens = list(dict.fromkeys(t for p in pools for t in (p.token0, p.token1)))
        loop = asyncio.get_running_loop()
        prices = await loop.run_in_executor(None, self.price_lookup.get_usd_prices, tokens)
        prices = {normalize_address(a): float(v or 0.0) for a, v in prices.items()}
        decimals = await self.token_decimals(tokens)

        survivors = []
        for pool in pools:
            value = liquidity_usd(pool, prices, decimals)
            if value >= self.min_liquidity_usd:
                pool.liquidity_usd = value
                survivors.append(pool)
            else:
                self.rejected.add(pool.address)
                self.metrics.record_rejected_pool("low_liquidity")
                logger.debug(f"Rejected {pool}: ${value:,.0f} liquidity")

        logger.info(
            f"💧 Liquidity gate: {len(survivors)}/{len(pools)} pools >= "
            f"${self.min_liquidity_usd:,.0f}"
        )
        return survivors

    async def token_decimals(self, tokens: Sequence[str]) -> Dict[str, int]:
        """Token decimals, cached; unreadable tokens default to 18."""
        missing = [t for t in tokens if t not in self._decimals_cache]
        if missing:
            results = await asyncio.gather(
                *(fetch_token_decimals(self.client, t) for t in missing),
                return_exceptions=True,
            )
            for token, result in zip(missing, results):
                if isinstance(result, (DataError, NetworkError)):
                    logger.debug(f"decimals() unreadable for {token}, assuming 18")
                    self._decimals_cache[token] = DEFAULT_DECIMALS
                elif isinstance(result, BaseException):
                    raise result
                else:
                    self._decimals_cache[token] = result
        return {t: self._decimals_cache[t] for t in tokens}
