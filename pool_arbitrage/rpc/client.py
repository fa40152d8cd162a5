"""
Resilient RPC client with endpoint rotation and subscription replay.

Wraps one active AsyncWeb3 provider from an EndpointPool. A failed call
rotates to the next endpoint and is retried once. A watchdog probes the
active endpoint and forces a rotation after repeated failures. Every
rotation re-arms the registered log/block filters, in registration order,
before it completes.

Notifications are polled from the armed filters into a bounded queue and
handed to handlers by a single dispatcher task.
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from pool_arbitrage.exceptions import (
    AllEndpointsExhausted,
    ConfigError,
    DecodeOrReadFailure,
    EndpointUnavailable,
)
from pool_arbitrage.metrics import ScannerMetrics, get_metrics

from .config_schema import RpcSettings
from .endpoints import EndpointPool

logger = logging.getLogger(__name__)

Operation = Callable[[AsyncWeb3], Awaitable[Any]]
Handler = Callable[[Any], Any]
ProviderFactory = Callable[[str, float], AsyncWeb3]
FilterParams = Union[str, Dict[str, Any]]

# Reverts and undecodable return data are data-layer failures, not endpoint failures
DATA_ERRORS = (ContractLogicError, BadFunctionCallOutput)

REASON_CALLER = "caller failure"
REASON_WATCHDOG = "watchdog threshold"
REASON_FORCED = "forced"


def make_async_web3(url: str, timeout: float) -> AsyncWeb3:
    """Build an AsyncWeb3 instance over HTTP for one endpoint."""
    return AsyncWeb3(
        AsyncHTTPProvider(
            url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)}
        )
    )


@dataclass
class Subscription:
    """A registered notification filter and its handler."""

    id: str
    filter_params: FilterParams
    handler: Handler
    label: str
    log_filter: Any = None
    armed_generation: int = -1


class ResilientClient:
    """
    RPC client bound to the active endpoint of an EndpointPool.

    Attributes:
        pool: Rotation state (endpoints, active index, failure counters)
        w3: AsyncWeb3 for the active endpoint
        generation: Incremented on every rotation
        rotation_count: Total rotations performed
    """

    def __init__(
        self,
        pool: EndpointPool,
        provider_factory: Optional[ProviderFactory] = None,
        request_timeout: float = 10.0,
        poll_interval: float = 1.5,
        watchdog_interval: float = 1.5,
        failure_threshold: int = 3,
        queue_size: int = 10000,
        metrics: Optional[ScannerMetrics] = None,
    ):
        self.pool = pool
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.watchdog_interval = watchdog_interval
        self.failure_threshold = failure_threshold
        self.metrics = metrics or get_metrics()

        self._provider_factory = provider_factory or make_async_web3
        self.w3: Optional[AsyncWeb3] = None
        self.generation = 0
        self.rotation_count = 0

        self._subscriptions: Dict[str, Subscription] = {}
        self._sub_ids = itertools.count(1)
        self._rotation_lock = asyncio.Lock()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._tasks: List[asyncio.Task] = []

    @property
    def name(self) -> str:
        return self.pool.name

    @property
    def active_url(self) -> str:
        return self.pool.active.url

    @property
    def subscriptions(self) -> List[Subscription]:
        """Active subscriptions in registration order."""
        return list(self._subscriptions.values())

    def connect(self) -> AsyncWeb3:
        """Create the provider for the active endpoint."""
        logger.info(f"🔌 Connecting {self.name} RPC provider: {self.active_url}")
        self.w3 = self._provider_factory(self.active_url, self.request_timeout)
        return self.w3

    # === CALLS ===

    async def call(
        self, operation: Operation, label: str = "call", address: Optional[str] = None
    ) -> Any:
        """
        Run an operation against the active endpoint.

        On failure or timeout the client rotates to the next endpoint and
        retries exactly once.

        Args:
            operation: Async callable receiving the active AsyncWeb3
            label: Short description for logs
            address: Contract address involved, for data errors

        Returns:
            The operation's result

        Raises:
            DecodeOrReadFailure: The contract reverted or returned bad data
            EndpointUnavailable: The call and its retry both failed
            AllEndpointsExhausted: Every endpoint failed since the last success
        """
        if self.w3 is None:
            self.connect()

        generation = self.generation
        try:
            return await self._attempt(operation, label, address)
        except DecodeOrReadFailure:
            raise
        except Exception as e:
            self._note_failure(e, label)

        await self.rotate(REASON_CALLER, expected_generation=generation)

        try:
            return await self._attempt(operation, label, address)
        except DecodeOrReadFailure:
            raise
        except Exception as e:
            exhausted = self._note_failure(e, label)
            endpoint = self.active_url
            if exhausted:
                logger.error(
                    f"❌ All {len(self.pool)} {self.name} endpoints failed for {label}: {e}"
                )
                raise AllEndpointsExhausted(
                    f"All {self.name} endpoints failed: {e}",
                    endpoint=endpoint,
                    pool=self.name,
                    details={"label": label},
                ) from e
            raise EndpointUnavailable(
                f"{label} failed after retry on {endpoint}: {e}",
                endpoint=endpoint,
                pool=self.name,
                details={"label": label},
            ) from e

    async def _attempt(
        self, operation: Operation, label: str, address: Optional[str]
    ) -> Any:
        try:
            result = await asyncio.wait_for(
                operation(self.w3), timeout=self.request_timeout
            )
        except DATA_ERRORS as e:
            # The endpoint answered; the contract data is the problem
            self.pool.record_success()
            raise DecodeOrReadFailure(
                f"{label} returned unusable data: {e}", address=address
            ) from e
        self.pool.record_success()
        return result

    def _note_failure(self, error: BaseException, label: str) -> bool:
        kind = "timeout" if isinstance(error, asyncio.TimeoutError) else "error"
        logger.warning(
            f"⚠️ {self.name} RPC {kind} on {self.active_url} during {label}: {error}"
        )
        self.metrics.record_call_failure(self.name)
        return self.pool.record_failure()

    async def get_chain_id(self) -> int:
        return await self.call(lambda w3: w3.eth.chain_id, label="chain_id")

    # === ROTATION ===

    async def rotate(
        self, reason: str = REASON_FORCED, expected_generation: Optional[int] = None
    ):
        """
        Switch to the next endpoint and re-arm every subscription.

        Args:
            reason: Why the rotation happened, for logs and metrics
            expected_generation: Skip the rotation if another task already
                rotated since this generation was observed

        Returns:
            The active Endpoint after the call
        """
        async with self._rotation_lock:
            if (
                expected_generation is not None
                and expected_generation != self.generation
            ):
                return self.pool.active

            previous = self.active_url
            endpoint = self.pool.advance()
            self.generation += 1
            self.rotation_count += 1
            self.connect()

            logger.warning(
                f"♻️ {self.name} RPC rotated ({reason}): {previous} -> {endpoint.url}"
            )
            self.metrics.record_rotation(self.name, reason, self.pool.active_index)

            await self._rearm_all()
            return endpoint

    async def _rearm_all(self) -> None:
        if not self._subscriptions:
            return
        armed = 0
        for sub in self.subscriptions:
            try:
                await self._arm(sub)
                armed += 1
            except Exception as e:
                sub.log_filter = None
                logger.warning(
                    f"Failed to re-arm subscription {sub.id} ({sub.label}) "
                    f"on {self.active_url}: {e}"
                )
        logger.info(
            f"🔁 Re-subscribed {armed}/{len(self._subscriptions)} "
            f"{self.name} listeners on new RPC"
        )

    async def _arm(self, sub: Subscription) -> None:
        sub.log_filter = await asyncio.wait_for(
            self.w3.eth.filter(sub.filter_params), timeout=self.request_timeout
        )
        sub.armed_generation = self.generation

    # === SUBSCRIPTIONS ===

    async def subscribe(
        self, filter_params: FilterParams, handler: Handler, label: Optional[str] = None
    ) -> str:
        """
        Register a notification filter and its handler.

        Args:
            filter_params: Log filter dict (address/topics) or "latest" for blocks
            handler: Called with each new entry; may be a coroutine function
            label: Short description for logs

        Returns:
            Subscription id
        """
        if self.w3 is None:
            self.connect()

        sub_id = f"{self.name}-sub-{next(self._sub_ids)}"
        sub = Subscription(
            id=sub_id,
            filter_params=filter_params,
            handler=handler,
            label=label or (filter_params if isinstance(filter_params, str) else "logs"),
        )
        self._subscriptions[sub_id] = sub

        try:
            await self._arm(sub)
        except Exception as e:
            sub.log_filter = None
            logger.warning(
                f"Subscription {sub_id} ({sub.label}) not armed yet, "
                f"will retry on next poll: {e}"
            )
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        return self._subscriptions.pop(sub_id, None) is not None

    async def poll_once(self) -> int:
        """
        Pull new entries from every subscription into the notification queue.

        Returns:
            Number of entries queued
        """
        queued = 0
        for sub in self.subscriptions:
            if sub.id not in self._subscriptions:
                continue

            if sub.log_filter is None or sub.armed_generation != self.generation:
                try:
                    sub.log_filter = await self.call(
                        lambda w3, s=sub: w3.eth.filter(s.filter_params),
                        label=f"arm {sub.label}",
                    )
                    sub.armed_generation = self.generation
                except (EndpointUnavailable, DecodeOrReadFailure) as e:
                    logger.warning(f"Could not arm {sub.id} ({sub.label}): {e}")
                    continue

            try:
                entries = await self.call(
                    lambda w3, s=sub: s.log_filter.get_new_entries(),
                    label=f"poll {sub.label}",
                )
            except (EndpointUnavailable, DecodeOrReadFailure) as e:
                logger.warning(f"Polling {sub.id} ({sub.label}) failed: {e}")
                continue

            for entry in entries or []:
                await self._queue.put((sub.id, entry))
                queued += 1
        return queued

    async def dispatch_pending(self) -> int:
        """Deliver every queued notification. Used when no dispatcher task runs."""
        delivered = 0
        while not self._queue.empty():
            sub_id, entry = self._queue.get_nowait()
            try:
                await self._deliver(sub_id, entry)
                delivered += 1
            finally:
                self._queue.task_done()
        return delivered

    async def _deliver(self, sub_id: str, entry: Any) -> None:
        sub = self._subscriptions.get(sub_id)
        if sub is None:
            return
        try:
            result = sub.handler(entry)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler for {sub_id} ({sub.label}) failed: {e}", exc_info=True)

    # === WATCHDOG ===

    async def probe_once(self) -> bool:
        """
        Run one liveness probe.

        Returns:
            True if the probe caused a rotation
        """
        if self.w3 is None:
            self.connect()
        try:
            await asyncio.wait_for(self._probe(), timeout=self.request_timeout)
            ok = True
        except Exception as e:
            logger.debug(f"{self.name} liveness probe failed on {self.active_url}: {e}")
            ok = False

        if self.pool.record_probe(ok, self.failure_threshold):
            logger.warning(
                f"🐕 Watchdog rotating {self.name} provider after "
                f"{self.failure_threshold} failed probes"
            )
            await self.rotate(REASON_WATCHDOG)
            return True
        return False

    async def _probe(self) -> int:
        return await self.w3.eth.block_number

    # === TASKS ===

    async def start(self, watchdog: bool = True, poll: bool = True) -> None:
        """Start the dispatcher, poller and watchdog tasks."""
        if self.w3 is None:
            self.connect()
        self._tasks.append(asyncio.create_task(self._dispatch_loop()))
        if poll:
            self._tasks.append(asyncio.create_task(self._poll_loop()))
        if watchdog and self.watchdog_interval > 0:
            self._tasks.append(asyncio.create_task(self._watchdog_loop()))
        logger.info(
            f"Client started on {self.pool.describe()} ({len(self.pool)} endpoints)"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _dispatch_loop(self) -> None:
        while True:
            sub_id, entry = await self._queue.get()
            try:
                await self._deliver(sub_id, entry)
            finally:
                self._queue.task_done()

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"{self.name} poll loop error: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            try:
                await self.probe_once()
            except Exception as e:
                logger.error(f"{self.name} watchdog error: {e}", exc_info=True)


class RpcClients:
    """Independent read and write clients for one chain."""

    def __init__(self, read: ResilientClient, write: Optional[ResilientClient] = None):
        self.read = read
        self.write = write

    @classmethod
    def from_settings(
        cls,
        settings: RpcSettings,
        provider_factory: Optional[ProviderFactory] = None,
        metrics: Optional[ScannerMetrics] = None,
    ) -> "RpcClients":
        read = ResilientClient(
            EndpointPool(
                "read", settings.read_endpoints, randomize_start=settings.randomize_start
            ),
            provider_factory=provider_factory,
            request_timeout=settings.request_timeout_sec,
            poll_interval=settings.poll_interval_sec,
            watchdog_interval=settings.read_watchdog_interval_sec,
            failure_threshold=settings.failure_threshold,
            queue_size=settings.notification_queue_size,
            metrics=metrics,
        )

        write = None
        if settings.write_endpoints:
            write = ResilientClient(
                EndpointPool(
                    "write",
                    settings.write_endpoints,
                    randomize_start=settings.randomize_start,
                ),
                provider_factory=provider_factory,
                request_timeout=settings.request_timeout_sec,
                poll_interval=settings.poll_interval_sec,
                watchdog_interval=settings.write_watchdog_interval_sec,
                failure_threshold=settings.failure_threshold,
                metrics=metrics,
            )
        else:
            logger.warning("No WRITE RPCs configured; write watchdog disabled")

        return cls(read, write)

    async def start(self) -> None:
        await self.read.start()
        if self.write is not None:
            await self.write.start(poll=False)

    async def stop(self) -> None:
        await self.read.stop()
        if self.write is not None:
            await self.write.stop()

    async def verify_same_chain(self, chain_id: int) -> None:
        """
        Check that read and write endpoints serve the configured chain.

        Raises:
            ConfigError: If an endpoint reports a different chain id
        """
        read_chain = await self.read.get_chain_id()
        if int(read_chain) != int(chain_id):
            raise ConfigError(
                f"Read provider chainId {read_chain} != {chain_id}",
                details={"endpoint": self.read.active_url},
            )
        if self.write is not None:
            write_chain = await self.write.get_chain_id()
            if int(write_chain) != int(chain_id):
                raise ConfigError(
                    f"Write provider chainId {write_chain} != {chain_id} "
                    f"(check write_endpoints)",
                    details={"endpoint": self.write.active_url},
                )
        logger.info(f"✓ RPC endpoints verified on chain {chain_id}")
