"""
Scanner runner.

Wires the RPC clients, registry, engine, bootstrap scanner and recompute
driver together, and owns the periodic timers (rescan, retention prune).
"""

import asyncio
from typing import Callable, List, Optional

from pool_arbitrage.exceptions import NetworkError
from pool_arbitrage.metrics import ScannerMetrics, get_metrics
from pool_arbitrage.price_oracle import TokenPriceOracle
from pool_arbitrage.rpc import RpcClients
from pool_arbitrage.rpc.client import ProviderFactory
from pool_arbitrage.utils import format_duration, get_logger

from .arbitrage import ArbitrageEngine, FeeTable
from .bootstrap import BootstrapScanner, PriceLookup
from .config import ScannerConfig
from .opportunity_book import OpportunityBook
from .recompute import EventRecomputeDriver
from .registry import PoolRegistry
from .types import OpportunityRecord

logger = get_logger(__name__)


class ArbitrageRunner:
    """
    Long-running pool arbitrage scanner.

    Typical use:
        runner = ArbitrageRunner(config)
        await runner.run()
    """

    def __init__(
        self,
        config: ScannerConfig,
        clients: Optional[RpcClients] = None,
        price_lookup: Optional[PriceLookup] = None,
        provider_factory: Optional[ProviderFactory] = None,
        metrics: Optional[ScannerMetrics] = None,
    ):
        self.config = config
        self.metrics = metrics or get_metrics()
        self.clients = clients or RpcClients.from_settings(
            config.rpc, provider_factory=provider_factory, metrics=self.metrics
        )

        self.registry = PoolRegistry()
        self.book = OpportunityBook()
        self.engine = ArbitrageEngine(
            fee_table=FeeTable(config.fee_overrides, default_bps=config.fee_default_bps),
            notional_usd=config.notional_usd,
            min_profit_usd=config.min_profit_usd,
            min_edge=config.min_edge,
            swap_min_edge=config.swap_min_edge,
        )
        self.bootstrap = BootstrapScanner(
            self.clients.read,
            self.registry,
            self.engine,
            price_lookup
            or TokenPriceOracle(
                platform=config.price_platform,
                cache_ttl_seconds=config.price_cache_ttl_sec,
            ),
            config.exchanges,
            min_liquidity_usd=config.min_liquidity_usd,
            page_size=config.page_size,
            page_delay=config.page_delay_sec,
            max_pairs_per_exchange=config.max_pairs_per_exchange,
            metrics=self.metrics,
        )
        self.driver = EventRecomputeDriver(
            self.clients.read,
            self.registry,
            self.engine,
            sink=self.book.upsert,
            max_addresses_per_filter=config.max_addresses_per_filter,
            metrics=self.metrics,
        )

        self._timers: List[asyncio.Task] = []
        self._stopped = asyncio.Event()

    async def bootstrap_once(self) -> List[OpportunityRecord]:
        """Run one bootstrap (or rescan) pass and store its records."""
        records = await self.bootstrap.scan()
        self.book.upsert(records)
        for record in records[:10]:
            logger.info(record.format_log())
        logger.info(
            f"📋 {len(records)} opportunities from {records[0].source if records else 'scan'}, "
            f"{len(self.book)} in book"
        )
        return records

    async def run(self, once: bool = False) -> None:
        """
        Start everything and run until stop() is called.

        Args:
            once: Stop after the bootstrap pass; RPC failures are raised
                instead of retried
        """
        logger.info(f"Starting pool arbitrage scanner on {self.config.network}")
        await self.clients.start()
        try:
            if not await self._start_up(once) or once:
                return

            if self.config.metrics_enabled:
                await self.metrics.start_server(
                    port=self.config.metrics_port, host=self.config.metrics_host
                )

            self.driver.start()
            await self.driver.watch(self.registry.addresses())

            if self.config.rescan_interval_sec > 0:
                self._start_timer(
                    "rescan", self.config.rescan_interval_sec, self._rescan
                )
            if self.config.prune_interval_sec > 0:
                self._start_timer(
                    "prune", self.config.prune_interval_sec, self._prune
                )

            logger.info("✓ Scanner running, waiting for Swap events")
            await self._stopped.wait()
        finally:
            await self.shutdown()

    async def _start_up(self, once: bool) -> bool:
        """
        Verify the chain id and run the first bootstrap.

        While the endpoints are unreachable this is retried every
        startup_retry_sec; with once=True the NetworkError is raised instead.

        Returns:
            False if stop() was called before startup succeeded
        """
        while True:
            try:
                await self.clients.verify_same_chain(self.config.chain_id)
                await self.bootstrap_once()
                return True
            except NetworkError as e:
                if once:
                    raise
                logger.error(
                    f"❌ Startup failed, retrying in "
                    f"{format_duration(self.config.startup_retry_sec)}: {e}"
                )
            if await self._wait_stopped(self.config.startup_retry_sec):
                return False

    async def _wait_stopped(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def stop(self) -> None:
        self._stopped.set()

    async def shutdown(self) -> None:
        for task in self._timers:
            task.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()
        await self.driver.stop()
        await self.clients.stop()
        await self.metrics.stop_server()

    def _start_timer(self, name: str, interval: float, action: Callable) -> None:
        logger.info(f"⏱ {name} every {format_duration(interval)}")
        self._timers.append(asyncio.create_task(self._every(name, interval, action)))

    async def _every(self, name: str, interval: float, action: Callable) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception as e:
                logger.error(f"{name} timer failed: {e}", exc_info=True)

    async def _rescan(self) -> None:
        await self.bootstrap_once()
        await self.driver.watch(self.registry.addresses())

    async def _prune(self) -> None:
        self.book.prune(self.config.record_max_age_sec)
