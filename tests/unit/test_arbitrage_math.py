"""Tests for pricing, edge math and the arbitrage engine."""

import math
import unittest

import pytest
from hypothesis import given
from hypothesis import strategies as st

from conftest import addr
from dex_scanner.arbitrage import (
    ArbitrageEngine,
    FeeTable,
    directional_rate,
    edge_to_profit,
    estimate_direct_edge,
    estimate_triangular_edge,
    pair_key,
    spot_price,
)
from dex_scanner.registry import PoolRegistry
from dex_scanner.types import Pool

reserves = st.integers(min_value=1, max_value=10**30)
prices = st.floats(min_value=1e-9, max_value=1e9, allow_nan=False, allow_infinity=False)
fees = st.floats(min_value=0, max_value=0.05)
hex_addresses = st.binary(min_size=20, max_size=20).map(lambda b: "0x" + b.hex())

A, B, C, D = addr(1), addr(2), addr(3), addr(4)


def zero_fee_engine(**kwargs):
    return ArbitrageEngine(FeeTable(default_bps=0, include_known=False), **kwargs)


class TestPricing(unittest.TestCase):
    def test_spot_price(self):
        self.assertEqual(spot_price(200, 100), 2.0)

    def test_spot_price_unusable_reserves(self):
        self.assertEqual(spot_price(0, 100), 0.0)
        self.assertEqual(spot_price(100, 0), 0.0)
        self.assertEqual(spot_price(-5, 100), 0.0)
        self.assertEqual(spot_price(float("inf"), 1), 0.0)
        self.assertEqual(spot_price(None, 1), 0.0)

    def test_directional_rate_follows_token_in(self):
        pool = Pool("X", addr(10), A, B, 1000, 2000)
        self.assertEqual(directional_rate(pool, A), 2.0)
        self.assertEqual(directional_rate(pool, B), 0.5)
        self.assertEqual(directional_rate(pool, A.upper().replace("0X", "0x")), 2.0)


@given(r0=reserves, r1=reserves)
def test_price_inversion(r0, r1):
    assert spot_price(r0, r1) * spot_price(r1, r0) == pytest.approx(1.0, rel=1e-9)


@given(a=hex_addresses, b=hex_addresses)
def test_pair_key_symmetry(a, b):
    assert pair_key(a, b) == pair_key(b, a)
    assert pair_key(a.upper().replace("0X", "0x"), b) == pair_key(a, b)


@given(pa=prices, pb=prices, fa=fees, fb=fees)
def test_direct_edge_is_non_negative(pa, pb, fa, fb):
    assert estimate_direct_edge(pa, pb, fa, fb) >= 0


@given(p=prices, fa=fees, fb=fees)
def test_equal_prices_have_no_edge(p, fa, fb):
    assert estimate_direct_edge(p, p, fa, fb) == 0


@given(rate=st.floats(min_value=0, max_value=1.0), fee_list=st.lists(fees, max_size=3))
def test_triangular_clamps_at_parity(rate, fee_list):
    assert estimate_triangular_edge(rate, fee_list) == 0


class TestEdges(unittest.TestCase):
    def test_direct_edge_scenario_a(self):
        # 100 vs 102, no fees: 2 / 101
        self.assertAlmostEqual(estimate_direct_edge(100, 102), 2 / 101)

    def test_direct_edge_subtracts_fees(self):
        self.assertAlmostEqual(
            estimate_direct_edge(100, 102, 0.003, 0.003), 2 / 101 - 0.006
        )

    def test_direct_edge_zero_price(self):
        self.assertEqual(estimate_direct_edge(0, 102), 0.0)

    def test_triangular_edge_scenario_b(self):
        self.assertAlmostEqual(estimate_triangular_edge(2.0 * 0.6 * 0.9, [0.002] * 3), 0.074)

    def test_triangular_edge_not_finite(self):
        self.assertEqual(estimate_triangular_edge(math.inf, [0.003]), 0.0)
        self.assertEqual(estimate_triangular_edge(math.nan, [0.003]), 0.0)

    def test_edge_to_profit(self):
        self.assertAlmostEqual(edge_to_profit(0.01, 10000), 100.0)
        self.assertEqual(edge_to_profit(-0.01, 10000), 0.0)


class TestFeeTable(unittest.TestCase):
    def test_known_and_default(self):
        table = FeeTable(default_bps=25)
        self.assertEqual(table.fee_bps("QuickSwap V3"), 5)
        self.assertEqual(table.fee_bps("SomeNewDex"), 25)
        self.assertAlmostEqual(table.fee_fraction("DODO"), 0.001)

    def test_overrides_are_case_insensitive(self):
        table = FeeTable({"quickswapv2": 20})
        self.assertEqual(table.fee_bps("QuickSwapV2"), 20)


class TestEngine(unittest.TestCase):
    def setUp(self):
        self.registry = PoolRegistry()

    def add(self, n, token0, token1, r0, r1, dex="DexA"):
        pool = Pool(dex, addr(100 + n), token0, token1, r0, r1)
        return self.registry.upsert_pool(pool)

    def test_scenario_a_direct_emission(self):
        p1 = self.add(1, A, B, 100_000, 1_000, dex="DexA")
        self.add(2, A, B, 102_000, 1_000, dex="DexB")
        engine = zero_fee_engine()

        records = engine.recompute_around(p1, self.registry)

        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.kind, "direct")
        self.assertAlmostEqual(record.edge, 2 / 101)
        self.assertAlmostEqual(record.est_profit_usd, 10000 * 2 / 101)
        self.assertEqual(record.prices, (100.0, 102.0))
        self.assertEqual(record.dexes, ("DexA", "DexB"))

    def test_direct_orientation_is_normalised(self):
        p1 = self.add(1, A, B, 100_000, 1_000)
        # same pair listed the other way round, price 102 in A/B terms
        self.add(2, B, A, 1_000, 102_000)
        records = zero_fee_engine().recompute_around(p1, self.registry)
        self.assertAlmostEqual(records[0].edge, 2 / 101)

    def test_swap_min_edge_applies_to_swap_led_direct(self):
        p1 = self.add(1, A, B, 100_000, 1_000)
        self.add(2, A, B, 102_000, 1_000)
        engine = zero_fee_engine(swap_min_edge=0.05)
        self.assertEqual(engine.recompute_around(p1, self.registry), [])
        self.assertEqual(len(engine.scan_all(self.registry)), 1)

    def test_min_profit_filters(self):
        p1 = self.add(1, A, B, 100_000, 1_000)
        self.add(2, A, B, 102_000, 1_000)
        engine = zero_fee_engine(notional_usd=1000, min_profit_usd=40)
        # 0.0198 * 1000 = 19.8 < 40
        self.assertEqual(engine.recompute_around(p1, self.registry), [])

    def scenario_b(self):
        self.add(1, A, B, 1000, 2000, dex="Dex1")  # A->B 2.0
        self.add(2, B, C, 1000, 600, dex="Dex2")  # B->C 0.6
        self.add(3, C, A, 1000, 900, dex="Dex3")  # C->A 0.9
        return ArbitrageEngine(
            FeeTable(default_bps=20, include_known=False), notional_usd=10000
        )

    def test_scenario_b_triangular(self):
        engine = self.scenario_b()
        p1 = self.registry.pool_by_address(addr(101))

        records = engine.recompute_around(p1, self.registry)

        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.kind, "triangular")
        self.assertEqual(record.route, (A, B, C, A))
        self.assertEqual(record.pools, (addr(101), addr(102), addr(103)))
        self.assertAlmostEqual(record.cycle_rate, 1.08)
        self.assertAlmostEqual(record.edge, 0.074)
        self.assertAlmostEqual(record.est_profit_usd, 740.0)

    def test_triangle_found_from_any_leg(self):
        engine = self.scenario_b()
        p2 = self.registry.pool_by_address(addr(102))
        records = engine.recompute_around(p2, self.registry)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].route, (B, C, A, B))

    def test_scan_all_reports_each_cycle_once(self):
        engine = self.scenario_b()
        records = engine.scan_all(self.registry)
        self.assertEqual([r.kind for r in records], ["triangular"])
        self.assertEqual(records[0].source, "bootstrap")

    def test_localized_recompute_ignores_unrelated_pools(self):
        p1 = self.add(1, A, B, 100_000, 1_000)
        self.add(2, A, B, 102_000, 1_000)
        self.add(3, C, D, 100_000, 1_000)
        self.add(4, C, D, 150_000, 1_000)

        records = zero_fee_engine().recompute_around(p1, self.registry)

        involved = {a for r in records for a in r.pools}
        self.assertEqual(involved, {addr(101), addr(102)})

    def test_rank_is_descending_and_stable(self):
        p1 = self.add(1, A, B, 100_000, 1_000)
        self.add(2, A, B, 110_000, 1_000)
        self.add(3, A, B, 90_000, 1_000)
        records = zero_fee_engine().recompute_around(p1, self.registry)
        profits = [r.est_profit_usd for r in records]
        self.assertEqual(profits, sorted(profits, reverse=True))

        ranked = ArbitrageEngine.rank(records + records)
        self.assertEqual([r.id for r in ranked[:2]], [records[0].id, records[0].id])
