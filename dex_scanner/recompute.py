"""
Event-driven reserve refresh and localized recompute.

Swap logs mark pools dirty; a single worker refreshes each dirty pool's
reserves, writes them to the registry and recomputes only the
opportunities that involve that pool.

Per-pool state: STABLE -> DIRTY -> REFRESHING -> STABLE
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from web3 import Web3

from pool_arbitrage.exceptions import DataError, EndpointUnavailable, UnknownPool
from pool_arbitrage.metrics import ScannerMetrics, get_metrics
from pool_arbitrage.rpc import ResilientClient
from pool_arbitrage.utils import get_logger, normalize_address

from .abi import SWAP_TOPIC
from .adapters.v2 import fetch_reserves
from .arbitrage import ArbitrageEngine
from .registry import PoolRegistry
from .types import OpportunityRecord

logger = get_logger(__name__)

RecordSink = Callable[[List[OpportunityRecord]], Any]


class PoolState(Enum):
    STABLE = "stable"
    DIRTY = "dirty"
    REFRESHING = "refreshing"


def _log_field(log: Any, key: str) -> Any:
    try:
        return log[key]
    except (KeyError, TypeError, IndexError):
        return getattr(log, key, None)


def _tx_hash_hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


class EventRecomputeDriver:
    """
    Turns Swap notifications into registry refreshes and opportunity records.

    The worker is the only task that writes swap-led reserves, so refreshes
    of one pool never interleave.
    """

    def __init__(
        self,
        client: ResilientClient,
        registry: PoolRegistry,
        engine: ArbitrageEngine,
        sink: Optional[RecordSink] = None,
        max_addresses_per_filter: int = 500,
        metrics: Optional[ScannerMetrics] = None,
    ):
        self.client = client
        self.registry = registry
        self.engine = engine
        self.sink = sink
        self.max_addresses_per_filter = max(1, max_addresses_per_filter)
        self.metrics = metrics or get_metrics()

        self._states: Dict[str, PoolState] = {}
        self._rerun: Set[str] = set()
        self._last_log: Dict[str, Dict[str, Any]] = {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._watched: Dict[str, None] = {}
        self._subscription_ids: List[str] = []
        self._worker: Optional[asyncio.Task] = None

        self.dropped_unknown = 0
        self.coalesced = 0

    def state_of(self, address: str) -> PoolState:
        return self._states.get(normalize_address(address), PoolState.STABLE)

    @property
    def watched(self) -> List[str]:
        return list(self._watched)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # === NOTIFICATIONS ===

    def on_swap_log(self, log: Any) -> bool:
        """
        Handle one Swap log.

        Returns:
            True if the pool was queued for a refresh
        """
        raw_address = _log_field(log, "address")
        if raw_address is None:
            logger.debug(f"Ignoring log without address: {log}")
            return False

        address = normalize_address(raw_address)
        self.metrics.record_swap_notification()

        if address not in self.registry:
            self.dropped_unknown += 1
            logger.debug(f"Swap for unregistered pool {address} dropped")
            return False

        self._last_log[address] = {
            "tx_hash": _tx_hash_hex(_log_field(log, "transactionHash")),
            "block_number": _log_field(log, "blockNumber"),
        }

        state = self.state_of(address)
        if state is PoolState.DIRTY:
            self.coalesced += 1
            return False
        if state is PoolState.REFRESHING:
            self._rerun.add(address)
            return False

        self._states[address] = PoolState.DIRTY
        self._queue.put_nowait(address)
        return True

    # === REFRESH ===

    async def process(self, address: str) -> List[OpportunityRecord]:
        """Refresh one pool and recompute around it."""
        address = normalize_address(address)
        self._states[address] = PoolState.REFRESHING
        log_info = self._last_log.pop(address, {})
        started = time.time()

        try:
            if address not in self.registry:
                raise UnknownPool(f"Pool {address} is not registered", address=address)

            reserve0, reserve1, block_ts = await fetch_reserves(self.client, address)
            if not self.registry.refresh_reserves(address, reserve0, reserve1, block_ts):
                return []

            pool = self.registry.pool_by_address(address)
            records = self.engine.recompute_around(
                pool,
                self.registry,
                source="swap_event",
                tx_hash=log_info.get("tx_hash"),
                block_number=log_info.get("block_number"),
            )
        except UnknownPool as e:
            logger.warning(f"Dropping refresh: {e}")
            self.metrics.record_refresh_failure("unknown_pool")
            return []
        except DataError as e:
            logger.warning(f"⚠️ Skipping {address} this cycle: {e}")
            self.metrics.record_refresh_failure("decode")
            return []
        except EndpointUnavailable as e:
            logger.error(f"RPC unavailable refreshing {address}, waiting for next swap: {e}")
            self.metrics.record_refresh_failure("endpoint")
            return []
        finally:
            if address in self._rerun:
                self._rerun.discard(address)
                self._states[address] = PoolState.DIRTY
                self._queue.put_nowait(address)
            else:
                self._states[address] = PoolState.STABLE

        self.metrics.record_refresh(time.time() - started)
        if records:
            for record in records:
                logger.info(record.format_log())
            self.metrics.record_opportunities(records, "swap_event")
            if self.sink is not None:
                self.sink(records)
        return records

    async def drain(self) -> int:
        """Process queued pools until the queue is empty. Returns pools processed."""
        processed = 0
        while not self._queue.empty():
            address = self._queue.get_nowait()
            try:
                await self.process(address)
                processed += 1
            finally:
                self._queue.task_done()
        return processed

    async def _run_worker(self) -> None:
        while True:
            address = await self._queue.get()
            try:
                await self.process(address)
            except Exception as e:
                logger.error(f"Refresh worker error for {address}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    # === SUBSCRIPTIONS ===

    async def watch(self, addresses: Iterable[str]) -> int:
        """
        Subscribe to Swap logs for pools not already watched.

        Returns:
            Number of newly watched pools
        """
        new = []
        for address in addresses:
            address = normalize_address(address)
            if address not in self._watched and address not in new:
                new.append(address)
        if not new:
            return 0

        size = self.max_addresses_per_filter
        for start in range(0, len(new), size):
            chunk = new[start : start + size]
            filter_params = {
                "address": [Web3.to_checksum_address(a) for a in chunk],
                "topics": [SWAP_TOPIC],
            }
            sub_id = await self.client.subscribe(
                filter_params, self.on_swap_log, label=f"swaps[{len(chunk)} pools]"
            )
            self._subscription_ids.append(sub_id)
            for address in chunk:
                self._watched[address] = None

        logger.info(
            f"👂 Watching Swap events for {len(new)} new pools "
            f"({len(self._watched)} total)"
        )
        return len(new)

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run_worker())

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        for sub_id in self._subscription_ids:
            self.client.unsubscribe(sub_id)
        self._subscription_ids.clear()
