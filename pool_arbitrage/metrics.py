"""
Prometheus Metrics Server for the pool arbitrage scanner.

Exposes endpoint health, notification flow and opportunity counts.
"""

import logging
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class ScannerMetrics:
    """
    Scanner metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - RPC endpoint rotations and call failures
    - Swap notification throughput and refresh latency
    - Opportunity emission by kind and source
    - Registry size
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

    def _initialize_metrics(self):
        # === RPC METRICS ===
        self.rpc_rotations_total = Counter(
            "pool_arbitrage_rpc_rotations_total",
            "Total endpoint rotations",
            ["endpoint_pool", "reason"],
            registry=self.registry,
        )

        self.rpc_call_failures_total = Counter(
            "pool_arbitrage_rpc_call_failures_total",
            "Total failed RPC calls against the active endpoint",
            ["endpoint_pool"],
            registry=self.registry,
        )

        self.active_endpoint_index = Gauge(
            "pool_arbitrage_active_endpoint_index",
            "Index of the active endpoint in its pool",
            ["endpoint_pool"],
            registry=self.registry,
        )

        # === NOTIFICATION METRICS ===
        self.swap_notifications_total = Counter(
            "pool_arbitrage_swap_notifications_total",
            "Total swap notifications received",
            registry=self.registry,
        )

        self.pool_refresh_seconds = Histogram(
            "pool_arbitrage_pool_refresh_seconds",
            "Latency of reserve refresh plus localized recompute",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
            registry=self.registry,
        )

        self.pool_refresh_failures_total = Counter(
            "pool_arbitrage_pool_refresh_failures_total",
            "Pool refreshes skipped because of a read failure",
            ["error_type"],
            registry=self.registry,
        )

        # === OPPORTUNITY METRICS ===
        self.opportunities_emitted_total = Counter(
            "pool_arbitrage_opportunities_emitted_total",
            "Total opportunity records emitted",
            ["kind", "source"],
            registry=self.registry,
        )

        self.best_edge = Gauge(
            "pool_arbitrage_best_edge",
            "Best edge seen in the latest pass",
            ["kind"],
            registry=self.registry,
        )

        # === REGISTRY METRICS ===
        self.tracked_pools = Gauge(
            "pool_arbitrage_tracked_pools",
            "Pools currently held in the registry",
            registry=self.registry,
        )

        self.rejected_pools_total = Counter(
            "pool_arbitrage_rejected_pools_total",
            "Pools rejected at bootstrap",
            ["reason"],
            registry=self.registry,
        )

        self.last_activity_timestamp = Gauge(
            "pool_arbitrage_last_activity_timestamp",
            "Unix timestamp of the last processed notification",
            registry=self.registry,
        )

    def record_rotation(self, endpoint_pool: str, reason: str, new_index: int):
        """Record an endpoint rotation"""
        self.rpc_rotations_total.labels(endpoint_pool=endpoint_pool, reason=reason).inc()
        self.active_endpoint_index.labels(endpoint_pool=endpoint_pool).set(new_index)

    def record_call_failure(self, endpoint_pool: str):
        """Record a failed RPC call"""
        self.rpc_call_failures_total.labels(endpoint_pool=endpoint_pool).inc()

    def record_swap_notification(self):
        """Record an incoming swap notification"""
        self.swap_notifications_total.inc()
        self.last_activity_timestamp.set(time.time())

    def record_refresh(self, duration_seconds: float):
        """Record a completed pool refresh"""
        self.pool_refresh_seconds.observe(duration_seconds)

    def record_refresh_failure(self, error_type: str):
        """Record a skipped pool refresh"""
        self.pool_refresh_failures_total.labels(error_type=error_type).inc()

    def record_opportunities(self, records, source: str):
        """Record emitted opportunities"""
        best: Dict[str, float] = {}
        for record in records:
            self.opportunities_emitted_total.labels(
                kind=record.kind, source=source
            ).inc()
            best[record.kind] = max(best.get(record.kind, 0.0), record.edge)
        for kind, edge in best.items():
            self.best_edge.labels(kind=kind).set(edge)

    def update_tracked_pools(self, count: int):
        """Update registry size"""
        self.tracked_pools.set(count)

    def record_rejected_pool(self, reason: str):
        """Record a pool rejected at bootstrap"""
        self.rejected_pools_total.labels(reason=reason).inc()

    # === HTTP EXPOSITION ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """
        Serve the registry over HTTP (plus /health) on the running loop.

        Returns:
            False if the listener could not be started; the scanner keeps
            running without exposition in that case
        """
        app = web.Application()
        app.router.add_get(path, self._serve_metrics)
        app.router.add_get("/health", self._serve_health)
        runner = web.AppRunner(app)
        try:
            await runner.setup()
            site = web.TCPSite(runner, host, port)
            await site.start()
        except OSError as e:
            logger.error(f"Metrics server could not bind {host}:{port}: {e}")
            await runner.cleanup()
            return False

        self._app, self._runner, self._site = app, runner, site
        logger.info(f"📊 Metrics exposed on http://{host}:{port}{path}")
        return True

    async def stop_server(self):
        if self._runner is None:
            return
        runner = self._runner
        self._app = self._runner = self._site = None
        await runner.cleanup()
        logger.info("📊 Metrics server stopped")

    async def _serve_metrics(self, request):
        # aiohttp rejects a charset inside content_type
        body = generate_latest(self.registry).decode("utf-8")
        return web.Response(text=body, content_type=CONTENT_TYPE_LATEST.split(";")[0])

    async def _serve_health(self, request):
        return web.json_response({"status": "ok", **self.get_metrics_summary()})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Headline numbers for /health and logs."""
        return {
            "metrics_available": True,
            "tracked_pools": self.tracked_pools._value.get(),
            "swap_notifications": self.swap_notifications_total._value.get(),
            "timestamp": time.time(),
        }


_global_metrics: Optional[ScannerMetrics] = None


def get_metrics() -> ScannerMetrics:
    """Process-wide ScannerMetrics on the default registry, created on first use."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = ScannerMetrics()
    return _global_metrics


def initialize_metrics(registry: Optional[CollectorRegistry] = None) -> ScannerMetrics:
    """Replace the process-wide instance (tests pass a private registry)."""
    global _global_metrics
    _global_metrics = ScannerMetrics(registry)
    return _global_metrics
