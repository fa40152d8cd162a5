"""
Shared fixtures: an in-memory stand-in for a set of JSON-RPC endpoints.

FakeNetwork hands out FakeWeb3 objects per endpoint URL (use
network.factory as a ResilientClient provider_factory). Endpoints can be
marked down (calls raise) or hanging (calls never return), contract state
is shared across endpoints, and log filters live on the endpoint that
created them.
"""

import asyncio
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry
from web3.exceptions import BadFunctionCallOutput

from pool_arbitrage.metrics import ScannerMetrics
from pool_arbitrage.rpc import EndpointPool, ResilientClient


class FakeFilter:
    def __init__(self, eth: "FakeEth", params: Any):
        self.eth = eth
        self.params = params
        self.entries: List[Any] = []

    def matches(self, entry: Dict[str, Any]) -> bool:
        if self.params == "latest":
            return "address" not in entry
        addresses = {a.lower() for a in self.params.get("address", [])}
        return str(entry.get("address", "")).lower() in addresses

    async def get_new_entries(self):
        await self.eth._enter()
        entries, self.entries = self.entries, []
        return entries


class FakeFunction:
    def __init__(self, eth: "FakeEth", value: Any, args: tuple):
        self.eth = eth
        self.value = value
        self.args = args

    async def call(self):
        await self.eth._enter()
        value = self.value(*self.args) if callable(self.value) else self.value
        if isinstance(value, Exception):
            raise value
        return value


class FakeFunctions:
    def __init__(self, eth: "FakeEth", address: str):
        self._eth = eth
        self._address = address

    def __getattr__(self, name: str):
        state = self._eth.network.contracts.get(self._address, {})
        if name in state:
            value = state[name]
        else:
            value = BadFunctionCallOutput(f"{name}() returned no data at {self._address}")
        return lambda *args: FakeFunction(self._eth, value, args)


class FakeContract:
    def __init__(self, eth: "FakeEth", address: str):
        self.address = address
        self.functions = FakeFunctions(eth, address.lower())


class FakeEth:
    def __init__(self, network: "FakeNetwork", url: str):
        self.network = network
        self.url = url

    async def _enter(self):
        self.network.calls[self.url] += 1
        if self.url in self.network.hanging:
            await asyncio.sleep(60)
        if self.url in self.network.down:
            raise ConnectionError(f"{self.url} unreachable")

    async def _value(self, getter):
        await self._enter()
        return getter()

    @property
    def block_number(self):
        return self._value(lambda: self.network.block_number)

    @property
    def chain_id(self):
        return self._value(lambda: self.network.chain_ids.get(self.url, self.network.chain_id))

    async def filter(self, params):
        await self._enter()
        log_filter = FakeFilter(self, params)
        self.network.filters[self.url].append(log_filter)
        return log_filter

    def contract(self, address: str, abi=None):
        return FakeContract(self, address)


class FakeWeb3:
    def __init__(self, network: "FakeNetwork", url: str):
        self.url = url
        self.eth = FakeEth(network, url)


class FakeNetwork:
    """Several endpoints serving one chain."""

    def __init__(self, chain_id: int = 137):
        self.chain_id = chain_id
        self.chain_ids: Dict[str, int] = {}
        self.block_number = 1000
        self.down = set()
        self.hanging = set()
        self.calls: Counter = Counter()
        self.filters: Dict[str, List[FakeFilter]] = defaultdict(list)
        self.contracts: Dict[str, Dict[str, Any]] = {}
        self.connections: List[str] = []

    def factory(self, url: str, timeout: float) -> FakeWeb3:
        self.connections.append(url)
        return FakeWeb3(self, url)

    def set_contract(self, address: str, **functions: Any) -> None:
        self.contracts.setdefault(address.lower(), {}).update(functions)

    def add_pair(
        self,
        address: str,
        token0: str,
        token1: str,
        reserve0: int,
        reserve1: int,
        block_ts: int = 1,
    ) -> None:
        self.set_contract(
            address,
            token0=token0,
            token1=token1,
            getReserves=[reserve0, reserve1, block_ts],
        )

    def add_factory(self, address: str, pairs: List[str]) -> None:
        self.set_contract(
            address,
            allPairsLength=len(pairs),
            allPairs=lambda i: pairs[i],
        )

    def emit_log(self, entry: Dict[str, Any]) -> int:
        """Deliver a log to every matching filter. Returns deliveries."""
        delivered = 0
        for filters in self.filters.values():
            for log_filter in filters:
                if log_filter.matches(entry):
                    log_filter.entries.append(entry)
                    delivered += 1
        return delivered


def swap_log(pool_address: str, tx_hash: str = "0xabc", block_number: int = 1001):
    return {
        "address": pool_address,
        "transactionHash": tx_hash,
        "blockNumber": block_number,
        "topics": ["0xd78ad95fa46c994b6551d0da85fc275fe613dacf8b9baed548f383ad7bc38c5f"],
    }


def addr(n: int) -> str:
    """Deterministic lower-case 20-byte address."""
    return "0x" + format(n, "040x")


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def metrics():
    """ScannerMetrics on a private registry"""
    return ScannerMetrics(CollectorRegistry())


@pytest.fixture
def make_client(network, metrics):
    def _make(urls=None, name="read", start_index=0, **kwargs) -> ResilientClient:
        urls = urls or ["http://rpc-a", "http://rpc-b", "http://rpc-c"]
        kwargs.setdefault("request_timeout", 0.2)
        return ResilientClient(
            EndpointPool(name, urls, start_index=start_index),
            provider_factory=network.factory,
            metrics=metrics,
            **kwargs,
        )

    return _make
