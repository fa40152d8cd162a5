"""Tests for the swap-driven refresh and localized recompute driver."""

import pytest

from conftest import addr, swap_log
from dex_scanner.arbitrage import ArbitrageEngine, FeeTable
from dex_scanner.recompute import EventRecomputeDriver, PoolState
from dex_scanner.registry import PoolRegistry
from dex_scanner.types import Pool

A, B, C, D = addr(1), addr(2), addr(3), addr(4)
P1, P2, P3, P4 = addr(101), addr(102), addr(103), addr(104)


@pytest.fixture
def registry():
    registry = PoolRegistry()
    registry.upsert_pool(Pool("DexA", P1, A, B, 100_000, 1_000))
    registry.upsert_pool(Pool("DexB", P2, A, B, 100_000, 1_000))
    registry.upsert_pool(Pool("DexA", P3, C, D, 100_000, 1_000))
    registry.upsert_pool(Pool("DexB", P4, C, D, 100_000, 1_000))
    return registry


@pytest.fixture
def sink():
    return []


@pytest.fixture
def driver(make_client, registry, metrics, sink):
    engine = ArbitrageEngine(FeeTable(default_bps=0, include_known=False))
    return EventRecomputeDriver(
        make_client(), registry, engine, sink=sink.extend, metrics=metrics
    )


class TestNotifications:
    def test_unknown_pool_is_dropped(self, driver):
        assert not driver.on_swap_log(swap_log(addr(999)))
        assert driver.dropped_unknown == 1
        assert driver.pending == 0

    def test_swap_marks_dirty_once(self, driver):
        assert driver.on_swap_log(swap_log(P1))
        assert not driver.on_swap_log(swap_log(P1))

        assert driver.state_of(P1) is PoolState.DIRTY
        assert driver.pending == 1
        assert driver.coalesced == 1

    def test_checksummed_log_address(self, driver):
        assert driver.on_swap_log(swap_log("0x" + P1[2:].upper()))
        assert driver.state_of(P1) is PoolState.DIRTY

    @pytest.mark.asyncio
    async def test_swap_during_refresh_requeues(self, driver, network):
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=5)
        driver.on_swap_log(swap_log(P1))
        await driver.drain()

        # a notification that lands mid-refresh
        driver._states[P1] = PoolState.REFRESHING
        assert not driver.on_swap_log(swap_log(P1))
        await driver.process(P1)

        assert driver.state_of(P1) is PoolState.DIRTY
        assert driver.pending == 1
        await driver.drain()
        assert driver.state_of(P1) is PoolState.STABLE


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_updates_registry_and_emits(self, driver, network, registry, sink):
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=5)
        driver.on_swap_log(swap_log(P1, tx_hash="0xfeed", block_number=77))

        assert await driver.drain() == 1

        pool = registry.pool_by_address(P1)
        assert (pool.reserve0, pool.reserve1) == (102_000, 1_000)
        assert pool.version == 1
        assert driver.state_of(P1) is PoolState.STABLE

        assert len(sink) == 1
        record = sink[0]
        assert record.kind == "direct"
        assert record.source == "swap_event"
        assert record.tx_hash == "0xfeed"
        assert record.block_number == 77
        assert record.edge == pytest.approx(2 / 101)

    @pytest.mark.asyncio
    async def test_unrelated_pools_untouched(self, driver, network, registry):
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=5)
        driver.on_swap_log(swap_log(P1))
        await driver.drain()

        for address in (P2, P3, P4):
            assert registry.pool_by_address(address).version == 0
        assert network.calls["http://rpc-a"] == 1

    @pytest.mark.asyncio
    async def test_decode_failure_skips_pool(self, driver, registry, sink, metrics):
        # no contract state for P1 on the fake chain
        driver.on_swap_log(swap_log(P1))
        await driver.drain()

        assert P1 in registry
        assert registry.pool_by_address(P1).version == 0
        assert driver.state_of(P1) is PoolState.STABLE
        assert sink == []
        assert metrics.pool_refresh_failures_total.labels(error_type="decode")._value.get() == 1

    @pytest.mark.asyncio
    async def test_endpoint_outage_skips_until_next_swap(self, driver, network, registry, sink):
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=5)
        network.down.update({"http://rpc-a", "http://rpc-b", "http://rpc-c"})
        driver.on_swap_log(swap_log(P1))
        await driver.drain()

        assert sink == []
        assert driver.state_of(P1) is PoolState.STABLE

        network.down.clear()
        driver.on_swap_log(swap_log(P1))
        await driver.drain()
        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_stale_read_is_not_recomputed(self, driver, network, registry, sink):
        registry.refresh_reserves(P1, 100_000, 1_000, block_timestamp=10)
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=9)
        driver.on_swap_log(swap_log(P1))
        await driver.drain()

        assert registry.pool_by_address(P1).reserve0 == 100_000
        assert sink == []


class TestWatch:
    @pytest.mark.asyncio
    async def test_watch_chunks_filters(self, make_client, registry, metrics, network):
        engine = ArbitrageEngine()
        driver = EventRecomputeDriver(
            make_client(), registry, engine, max_addresses_per_filter=3, metrics=metrics
        )
        assert await driver.watch([P1, P2, P3, P4]) == 4
        assert await driver.watch([P1, P4]) == 0

        filters = network.filters["http://rpc-a"]
        assert [len(f.params["address"]) for f in filters] == [3, 1]
        assert all(f.params["topics"] == [
            "0xd78ad95fa46c994b6551d0da85fc275fe613dacf8b9baed548f383ad7bc38c5f"
        ] for f in filters)

    @pytest.mark.asyncio
    async def test_end_to_end_swap_to_record(self, driver, network, sink):
        await driver.watch([P1, P2])
        network.add_pair(P2, A, B, 98_000, 1_000, block_ts=3)
        network.emit_log(swap_log(P2))

        await driver.client.poll_once()
        await driver.client.dispatch_pending()
        await driver.drain()

        assert len(sink) == 1
        assert sink[0].pools == (P2, P1)

    @pytest.mark.asyncio
    async def test_swaps_survive_rotation(self, driver, network, sink):
        await driver.watch([P1])
        network.add_pair(P1, A, B, 102_000, 1_000, block_ts=5)
        await driver.client.rotate("forced")

        network.emit_log(swap_log(P1))
        await driver.client.poll_once()
        await driver.client.dispatch_pending()
        await driver.drain()

        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, driver):
        await driver.watch([P1])
        driver.start()
        await driver.stop()
        assert driver.client.subscriptions == []
