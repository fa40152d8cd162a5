"""End-to-end runner tests against the in-memory endpoint network."""

import asyncio

import pytest

import run_scanner
from conftest import addr, swap_log
from dex_scanner.config import ScannerConfig
from dex_scanner.runner import ArbitrageRunner
from pool_arbitrage.exceptions import ConfigError, EndpointUnavailable, NetworkError

WMATIC, USDC = addr(1), addr(2)
FACTORY_A, FACTORY_B = addr(501), addr(502)
POOL_A, POOL_B = addr(101), addr(102)
E18 = 10**18


class FakePrices:
    def get_usd_prices(self, addresses):
        return {a: 1.0 for a in addresses}


def make_config(**overrides):
    raw = {
        "network": "testnet",
        "chain_id": 137,
        "rpc": {
            "read_endpoints": ["http://r1", "http://r2"],
            "write_endpoints": ["http://w1"],
            "randomize_start": False,
            "poll_interval_sec": 0.01,
            "request_timeout_sec": 0.5,
            "watchdog": {"read_interval_sec": 0.05, "write_interval_sec": 0.05},
        },
        "exchanges": [
            {"name": "DexA", "factory": FACTORY_A, "abi": "uniswap_v2"},
            {"name": "DexB", "factory": FACTORY_B, "abi": "uniswap_v2"},
        ],
        "fees": {"default_bps": 0},
        "arbitrage": {"notional_usd": 10000, "min_profit_usd": 40, "swap_min_edge": 0.01},
        "liquidity": {"min_liquidity_usd": 50000},
        "scan": {"page_size": 10, "page_delay_sec": 0, "startup_retry_sec": 0.05},
    }
    raw.update(overrides)
    return ScannerConfig(raw)


@pytest.fixture
def chain(network):
    network.set_contract(WMATIC, decimals=18)
    network.set_contract(USDC, decimals=18)
    network.add_pair(POOL_A, WMATIC, USDC, 100_000 * E18, 102_000 * E18)
    network.add_pair(POOL_B, WMATIC, USDC, 100_000 * E18, 100_000 * E18)
    network.add_factory(FACTORY_A, [POOL_A])
    network.add_factory(FACTORY_B, [POOL_B])
    return network


def make_runner(network, metrics, config=None):
    return ArbitrageRunner(
        config or make_config(),
        price_lookup=FakePrices(),
        provider_factory=network.factory,
        metrics=metrics,
    )


class TestArbitrageRunner:
    @pytest.mark.asyncio
    async def test_once_fills_book(self, chain, metrics):
        runner = make_runner(chain, metrics)

        await runner.run(once=True)

        assert len(runner.registry) == 2
        assert len(runner.book) == 1
        record = runner.book.top(1)[0]
        assert record.kind == "direct"
        assert record.source == "bootstrap"
        assert record.edge == pytest.approx(0.02 / 1.01)
        assert set(record.dexes) == {"DexA", "DexB"}

    @pytest.mark.asyncio
    async def test_chain_mismatch_aborts(self, chain, metrics):
        chain.chain_ids["http://w1"] = 1
        runner = make_runner(chain, metrics)

        with pytest.raises(ConfigError):
            await runner.run(once=True)
        assert len(runner.registry) == 0

    @pytest.mark.asyncio
    async def test_rescan_replaces_records_for_live_routes(self, chain, metrics):
        runner = make_runner(chain, metrics)
        await runner.run(once=True)
        first = runner.book.top(1)[0]

        await runner.bootstrap_once()

        assert len(runner.book) == 1
        assert first.id not in runner.book
        assert runner.book.top(1)[0].route_key == first.route_key

    @pytest.mark.asyncio
    async def test_once_with_every_endpoint_down_raises_network_error(self, chain, metrics):
        chain.down.update({"http://r1", "http://r2", "http://w1"})
        runner = make_runner(chain, metrics)

        with pytest.raises(NetworkError):
            await runner.run(once=True)
        assert len(runner.registry) == 0

    @pytest.mark.asyncio
    async def test_startup_retries_until_endpoints_recover(self, chain, metrics):
        chain.down.update({"http://r1", "http://r2", "http://w1"})
        runner = make_runner(chain, metrics)
        task = asyncio.create_task(runner.run())

        try:
            await asyncio.sleep(0.15)
            assert not task.done()
            assert len(runner.registry) == 0

            chain.down.clear()
            for _ in range(200):
                if runner.driver.watched:
                    break
                await asyncio.sleep(0.01)
        finally:
            runner.stop()
            await asyncio.wait_for(task, timeout=2)

        assert len(runner.registry) == 2
        assert len(runner.book) == 1

    @pytest.mark.asyncio
    async def test_stop_during_startup_retry(self, chain, metrics):
        chain.down.update({"http://r1", "http://r2", "http://w1"})
        runner = make_runner(chain, metrics)
        task = asyncio.create_task(runner.run())

        await asyncio.sleep(0.1)
        runner.stop()
        await asyncio.wait_for(task, timeout=2)

        assert runner.driver.watched == []

    @pytest.mark.asyncio
    async def test_swap_event_adds_record(self, chain, metrics):
        runner = make_runner(chain, metrics)
        task = asyncio.create_task(runner.run())

        try:
            for _ in range(200):
                if runner.driver.watched:
                    break
                await asyncio.sleep(0.01)
            assert set(runner.driver.watched) == {POOL_A, POOL_B}

            chain.add_pair(POOL_A, WMATIC, USDC, 100_000 * E18, 105_000 * E18, block_ts=2)
            chain.emit_log(swap_log(POOL_A, tx_hash="0xfeed", block_number=1002))

            swap_records = []
            for _ in range(200):
                swap_records = [
                    r for r in runner.book.top(10) if r.source == "swap_event"
                ]
                if swap_records:
                    break
                await asyncio.sleep(0.01)
        finally:
            runner.stop()
            await asyncio.wait_for(task, timeout=2)

        assert swap_records
        assert swap_records[0].tx_hash == "0xfeed"
        assert swap_records[0].edge == pytest.approx(0.05 / 1.025)
        assert runner.registry.pool_by_address(POOL_A).reserve1 == 105_000 * E18


class TestCli:
    def test_missing_config_returns_1(self, monkeypatch, tmp_path):
        monkeypatch.setattr(run_scanner.logging_config, "setup", lambda *a, **k: None)
        assert run_scanner.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_parse_args_defaults(self):
        args = run_scanner.parse_args([])
        assert args.config == "configs/polygon.yaml"
        assert args.once is False
        assert args.metrics_port is None

    def test_rpc_failure_returns_1(self, monkeypatch):
        class UnreachableRunner:
            def __init__(self, config):
                self.config = config

            async def run(self, once=False):
                raise EndpointUnavailable(
                    "read endpoints down", endpoint="http://r1", pool="read"
                )

        monkeypatch.setattr(run_scanner.logging_config, "setup", lambda *a, **k: None)
        monkeypatch.setattr(run_scanner, "load_config", lambda path: object())
        monkeypatch.setattr(run_scanner, "ArbitrageRunner", UnreachableRunner)

        assert run_scanner.main(["--config", "unused.yaml", "--once"]) == 1
