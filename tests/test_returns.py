"""Tests for the seeded return generator and the crash schedule."""

import math
import statistics

import pytest

from drawdown_planner.calculators.returns import (
    LinearCongruentialGenerator,
    MarketState,
    ReturnGenerator,
    active_crash,
    crash_annual_rate,
)
from drawdown_planner.scenario import Scenario


def test_lcg_first_value():
    lcg = LinearCongruentialGenerator(0)
    assert lcg.next_int() == 1013904223
    assert lcg.next_int() == (1664525 * 1013904223 + 1013904223) % 2 ** 32


def test_uniform_in_open_interval():
    gen = ReturnGenerator(123)
    draws = [gen.uniform() for _ in range(5000)]
    assert all(0.0 < u < 1.0 for u in draws)
    assert 0.45 < statistics.fmean(draws) < 0.55


def test_same_seed_same_stream():
    a = ReturnGenerator(99)
    b = ReturnGenerator(99)
    assert [a.student_t(0.05, 0.15) for _ in range(20)] == [b.student_t(0.05, 0.15) for _ in range(20)]


def test_different_seeds_differ():
    assert ReturnGenerator(1).uniform() != ReturnGenerator(2).uniform()


def test_for_run_offsets_seed():
    assert ReturnGenerator.for_run(10, 5).seed == 15
    assert ReturnGenerator.for_run(10, 5).uniform() == ReturnGenerator(15).uniform()


def test_student_t_moments():
    gen = ReturnGenerator(2024)
    draws = [gen.student_t(0.05, 0.10) for _ in range(2000)]
    assert statistics.fmean(draws) == pytest.approx(0.05, abs=0.02)
    assert statistics.pstdev(draws) == pytest.approx(0.10, abs=0.02)


def test_zero_volatility_returns_mean():
    gen = ReturnGenerator(5)
    assert gen.student_t(0.04, 0.0) == 0.04


def test_chi_squared_is_positive():
    gen = ReturnGenerator(8)
    assert all(gen.chi_squared() > 0 for _ in range(50))


@pytest.mark.parametrize("drop,duration", [(0.36, 2), (0.5, 1), (0.3, 3)])
def test_crash_rate_compounds_to_total_drop(drop, duration):
    rate = crash_annual_rate(drop, duration)
    assert math.isclose((1 + rate) ** duration, 1 - drop)


def _crash_scenario():
    return Scenario.from_dict({
        "birth_year": 1960,
        "start_year": 2025,
        "end_year": 2040,
        "accounts": {"rrsp": {"holdings": {"growth": 100000}}},
        "market_crashes": [{"start_year": 2030, "duration": 2, "impact": {"growth": 0.36}}],
    })


def test_active_crash_window():
    scenario = _crash_scenario()
    assert active_crash(scenario.market_crashes, 2029) is None
    assert active_crash(scenario.market_crashes, 2030) is not None
    assert active_crash(scenario.market_crashes, 2031) is not None
    assert active_crash(scenario.market_crashes, 2032) is None


def test_market_state_deterministic_uses_expected_growth():
    scenario = _crash_scenario()
    state = MarketState.for_year(2026, scenario)
    for asset, profile in scenario.asset_profiles.items():
        assert state.rate(asset) == profile.growth
    assert not state.in_crash


def test_market_state_crash_overrides_affected_assets():
    scenario = _crash_scenario()
    state = MarketState.for_year(2030, scenario, ReturnGenerator(3))
    assert state.in_crash
    assert state.rate("growth") == pytest.approx(-0.2)
    assert state.rate("bond") != pytest.approx(-0.2)
