"""Annual asset returns: expected values, seeded Student-t samples and crashes.

Monte Carlo runs draw one fat-tailed return per asset class per year from a
small linear congruential generator, so a run is reproduced exactly from its
seed (``base_seed + run_index``) on any platform.  Deterministic runs use each
asset's expected growth.  Inside a scripted market crash the affected assets
lose a constant annual rate that compounds to the crash's total drop.

Example
-------

>>> round(crash_annual_rate(0.36, 2), 4)
-0.2
>>> gen = ReturnGenerator(42)
>>> 0.0 < gen.uniform() < 1.0
True
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, Optional

if TYPE_CHECKING:
    from ..scenario import MarketCrash, Scenario

DEFAULT_DF = 30


class LinearCongruentialGenerator:
    """32-bit LCG with the Numerical Recipes constants."""

    A = 1664525
    C = 1013904223
    M = 2 ** 32

    def __init__(self, seed: int):
        self.state = int(seed) % self.M

    def next_int(self) -> int:
        self.state = (self.A * self.state + self.C) % self.M
        return self.state

    def uniform(self) -> float:
        # Half-step offset keeps the value strictly inside (0, 1).
        return (self.next_int() + 0.5) / self.M


class ReturnGenerator:
    """Random variates built on :class:`LinearCongruentialGenerator`."""

    def __init__(self, seed: int):
        self.seed = int(seed)
        self._lcg = LinearCongruentialGenerator(seed)

    @classmethod
    def for_run(cls, base_seed: int, run_index: int) -> "ReturnGenerator":
        return cls(base_seed + run_index)

    def uniform(self) -> float:
        return self._lcg.uniform()

    def standard_normal(self) -> float:
        """Box-Muller transform of two uniforms."""
        u1 = self.uniform()
        u2 = self.uniform()
        return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    def chi_squared(self, df: int = DEFAULT_DF) -> float:
        return sum(self.standard_normal() ** 2 for _ in range(df))

    def student_t(self, mean: float, volatility: float, df: int = DEFAULT_DF) -> float:
        """Sample a return with the given mean and standard deviation.

        The t variate is scaled by ``sqrt((df - 2) / df)`` so that its standard
        deviation equals ``volatility``.  A non-finite sample falls back to the
        mean.
        """
        z = self.standard_normal()
        chi_sq = self.chi_squared(df)
        try:
            t = z / math.sqrt(chi_sq / df)
            value = mean + t * math.sqrt((df - 2) / df) * volatility
        except ZeroDivisionError:
            return mean
        if not math.isfinite(value):
            return mean
        return value


def crash_annual_rate(total_drop: float, duration: int) -> float:
    """Constant yearly rate that compounds to ``total_drop`` over ``duration`` years."""
    return (1.0 - total_drop) ** (1.0 / max(1, duration)) - 1.0


def active_crash(crashes: Iterable["MarketCrash"], year: int) -> Optional["MarketCrash"]:
    for crash in crashes:
        if crash.covers(year):
            return crash
    return None


@dataclass(frozen=True)
class MarketState:
    """Growth rate of every asset class for one simulated year."""

    year: int
    rates: Dict[str, float] = field(default_factory=dict)
    in_crash: bool = False

    def rate(self, asset: str) -> float:
        return self.rates.get(asset, 0.0)

    @classmethod
    def for_year(cls, year: int, scenario: "Scenario", generator: Optional[ReturnGenerator] = None) -> "MarketState":
        crash = active_crash(scenario.market_crashes, year)
        rates: Dict[str, float] = {}
        for asset, profile in scenario.asset_profiles.items():
            if generator is not None:
                # Draw even inside a crash so later years see the same stream.
                rate = generator.student_t(profile.growth, profile.volatility)
            else:
                rate = profile.growth
            if crash is not None and asset in crash.impact:
                rate = crash_annual_rate(crash.impact[asset], crash.duration)
            rates[asset] = rate
        return cls(year=year, rates=rates, in_crash=crash is not None)


__all__ = [
    "LinearCongruentialGenerator",
    "ReturnGenerator",
    "MarketState",
    "crash_annual_rate",
    "active_crash",
]
