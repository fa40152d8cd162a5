"""
Endpoint pools for RPC failover.

An EndpointPool is the explicit rotation state owned by one ResilientClient:
the ordered endpoint list, the active index and the failure counters.
"""

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pool_arbitrage.exceptions import ConfigError


@dataclass
class Endpoint:
    """A single RPC endpoint and how often it has failed."""

    url: str
    failures: int = 0

    def record_failure(self) -> int:
        """Increment the failure counter. It never decreases."""
        self.failures += 1
        return self.failures


class EndpointPool:
    """
    Ordered, round-robin set of endpoints for one role (read or write).

    Attributes:
        name: Pool label used in logs and metrics ("read" or "write")
        endpoints: Endpoint objects, in configured order
        active_index: Index of the endpoint currently in use
        failures_since_success: Consecutive failed calls since the last
            success, across rotations
        watchdog_failures: Consecutive failed liveness probes
    """

    def __init__(
        self,
        name: str,
        urls: Sequence[str],
        start_index: Optional[int] = None,
        randomize_start: bool = False,
    ):
        cleaned = [u.strip() for u in urls if isinstance(u, str) and u.strip()]
        if not cleaned:
            raise ConfigError(f"Endpoint pool '{name}' has no endpoints configured")

        self.name = name
        self.endpoints: List[Endpoint] = [Endpoint(url) for url in cleaned]

        if start_index is None:
            start_index = random.randrange(len(cleaned)) if randomize_start else 0
        self.active_index = start_index % len(cleaned)

        self.failures_since_success = 0
        self.watchdog_failures = 0

    def __len__(self) -> int:
        return len(self.endpoints)

    @property
    def active(self) -> Endpoint:
        """The endpoint currently in use."""
        return self.endpoints[self.active_index]

    def advance(self) -> Endpoint:
        """Rotate to the next endpoint, wrapping at the end of the list."""
        self.active_index = (self.active_index + 1) % len(self.endpoints)
        return self.active

    def record_failure(self) -> bool:
        """
        Record a failed call against the active endpoint.

        Returns:
            True once every endpoint has failed since the last success
        """
        self.active.record_failure()
        self.failures_since_success += 1
        return self.is_exhausted()

    def record_success(self) -> None:
        self.failures_since_success = 0

    def is_exhausted(self) -> bool:
        return self.failures_since_success >= len(self.endpoints)

    def record_probe(self, ok: bool, threshold: int) -> bool:
        """
        Update the watchdog counter after a liveness probe.

        Returns:
            True when the threshold is reached; the counter is reset
        """
        if ok:
            self.watchdog_failures = 0
            return False
        self.watchdog_failures += 1
        if self.watchdog_failures >= threshold:
            self.watchdog_failures = 0
            return True
        return False

    def describe(self) -> str:
        return f"{self.name}[{self.active_index}] {self.active.url}"
