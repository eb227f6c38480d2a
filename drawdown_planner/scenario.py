"""Scenario schema, JSON loading and validation.

A scenario is the read-only input of every simulation run.  It is usually
built from a plain dictionary (or a JSON file with the same shape) and is
validated up front so that no simulation year runs on a bad configuration.

All rates and portfolio weights are decimal fractions: ``0.025`` is 2.5% and a
composition ``{"growth": 0.6, "bond": 0.4}`` is a 60/40 portfolio.

Minimal example::

    {
        "province": "ON",
        "birth_year": 1960,
        "start_year": 2025,
        "end_year": 2055,
        "accounts": {
            "rrsp": {"holdings": {"growth": 300000, "bond": 200000}},
            "tfsa": {"holdings": {"growth": 100000}},
            "non_reg": {"holdings": {"growth": 150000}, "acb": {"growth": 100000}}
        },
        "expenses": [{"type": "Living", "amount": 60000, "start_year": 2025,
                      "end_year": 2055, "growth_rate": 0.025}]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .calculators.accounts import ACCOUNT_KINDS
from .calculators.rrif import LIF_START_AGE, RRIF_START_AGE
from .calculators.strategy import RISK_PROFILES
from .calculators.taxes import provinces

logger = logging.getLogger(__name__)

EVENT_TYPES = ("income", "expense")
TAXATION_TYPES = ("non_taxable", "taxable_income", "capital_gain")

DEFAULT_ASSET_PROFILES: Dict[str, Dict[str, Any]] = {
    "growth": {"name": "Growth Stocks", "growth": 0.08, "dividend": 0.005, "volatility": 0.18},
    "balanced": {"name": "Balanced Stocks", "growth": 0.05, "dividend": 0.015, "volatility": 0.12},
    "dividend_can": {"name": "CAN Dividend", "growth": 0.03, "dividend": 0.04, "volatility": 0.10, "canadian_dividend": True},
    "dividend_us": {"name": "US Dividend", "growth": 0.04, "dividend": 0.03, "volatility": 0.11},
    "bond": {"name": "Bonds", "growth": 0.01, "dividend": 0.025, "volatility": 0.05},
    "gic": {"name": "GIC/Cash", "growth": 0.0, "dividend": 0.02, "volatility": 0.001},
}

DEFAULT_START_COMPOSITION = {"growth": 0.5, "balanced": 0.1, "bond": 0.4}
DEFAULT_END_COMPOSITION = {"growth": 0.3, "balanced": 0.1, "bond": 0.5, "gic": 0.1}


class ScenarioError(ValueError):
    """Raised when a scenario cannot be parsed or fails validation."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def _amounts(mapping: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    return {str(k): float(v) for k, v in (mapping or {}).items()}


def _expect_dict(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ScenarioError(f"{path}: expected object")
    return value


def _expect_list(value: Any, path: str) -> List[Any]:
    if not isinstance(value, list):
        raise ScenarioError(f"{path}: expected array")
    return value


def _require(data: Dict[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise ScenarioError(f"{path}.{key}: missing required field")
    return data[key]


@dataclass(frozen=True)
class AssetProfile:
    name: str
    growth: float
    dividend: float
    volatility: float
    canadian_dividend: bool = False

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "AssetProfile":
        return cls(
            name=str(data.get("name", key)),
            growth=float(data.get("growth", 0.0)),
            dividend=float(data.get("dividend", 0.0)),
            volatility=float(data.get("volatility", 0.0)),
            canadian_dividend=bool(data.get("canadian_dividend", False)),
        )


@dataclass(frozen=True)
class AccountConfig:
    """Opening holdings by asset.

    ``acb`` may be given per asset, or as ``acb_ratio``: a single cost-to-value
    ratio applied to every holding.
    """

    holdings: Dict[str, float]
    acb: Dict[str, float]
    acb_ratio: Optional[float] = None

    @property
    def total(self) -> float:
        return sum(self.holdings.values())

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str) -> "AccountConfig":
        data = _expect_dict(data, path)
        holdings = _amounts(data.get("holdings"))
        ratio = data.get("acb_ratio")
        if ratio is None or data.get("acb"):
            return cls(holdings=holdings, acb=_amounts(data.get("acb")))
        ratio = float(ratio)
        return cls(
            holdings=holdings,
            acb={asset: value * ratio for asset, value in holdings.items()},
            acb_ratio=ratio,
        )


@dataclass(frozen=True)
class RecurringItem:
    """Income or expense that repeats every year between its start and end year.

    The amount is stated in ``start_year`` dollars and compounds at
    ``growth_rate`` from there.
    """

    type: str
    amount: float
    start_year: int
    end_year: int
    growth_rate: float = 0.0

    def active(self, year: int) -> bool:
        return self.start_year <= year <= self.end_year

    def amount_for(self, year: int) -> float:
        if not self.active(year):
            return 0.0
        return self.amount * (1.0 + self.growth_rate) ** (year - self.start_year)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str, default_end: int) -> "RecurringItem":
        data = _expect_dict(data, path)
        return cls(
            type=str(data.get("type", "Other")),
            amount=float(_require(data, "amount", path)),
            start_year=int(_require(data, "start_year", path)),
            end_year=int(data.get("end_year") or default_end),
            growth_rate=float(data.get("growth_rate", 0.0)),
        )


@dataclass(frozen=True)
class OneTimeEvent:
    year: int
    amount: float
    type: str
    name: str = ""
    taxation_type: str = "non_taxable"
    acb: float = 0.0

    @property
    def is_income(self) -> bool:
        return self.type == "income"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str) -> "OneTimeEvent":
        data = _expect_dict(data, path)
        kind = str(data.get("type", "expense"))
        default_taxation = "non_taxable" if kind == "income" else "n/a"
        return cls(
            year=int(_require(data, "year", path)),
            amount=float(_require(data, "amount", path)),
            type=kind,
            name=str(data.get("name", "")),
            taxation_type=str(data.get("taxation_type") or default_taxation),
            acb=float(data.get("acb", 0.0)),
        )


@dataclass(frozen=True)
class MarketCrash:
    """A scripted multi-year drawdown.  ``impact`` maps asset -> total peak-to-trough drop."""

    start_year: int
    duration: int
    impact: Dict[str, float]

    def covers(self, year: int) -> bool:
        return self.start_year <= year < self.start_year + self.duration

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str) -> "MarketCrash":
        data = _expect_dict(data, path)
        return cls(
            start_year=int(_require(data, "start_year", path)),
            duration=int(data.get("duration", 1)),
            impact=_amounts(data.get("impact")),
        )


@dataclass(frozen=True)
class Portfolio:
    start_composition: Dict[str, float]
    end_composition: Dict[str, float]
    account_end_compositions: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Portfolio":
        data = data or {}
        per_account = {
            kind: _amounts(comp)
            for kind, comp in (data.get("account_end_compositions") or {}).items()
        }
        return cls(
            start_composition=_amounts(data.get("start_composition", DEFAULT_START_COMPOSITION)),
            end_composition=_amounts(data.get("end_composition", DEFAULT_END_COMPOSITION)),
            account_end_compositions=per_account,
        )


@dataclass(frozen=True)
class ExpertMode:
    enabled: bool = False
    look_ahead_years: int = 7
    tfsa_withdrawal_penalty: Optional[float] = None
    rrsp_withdrawal_bonus: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExpertMode":
        data = data or {}
        penalty = data.get("tfsa_withdrawal_penalty")
        bonus = data.get("rrsp_withdrawal_bonus")
        return cls(
            enabled=bool(data.get("enabled", False)),
            look_ahead_years=int(data.get("look_ahead_years", 7)),
            tfsa_withdrawal_penalty=None if penalty is None else float(penalty),
            rrsp_withdrawal_bonus=None if bonus is None else float(bonus),
        )


@dataclass(frozen=True)
class MonteCarloConfig:
    runs: int = 1000
    risk_profile: str = "balanced"
    base_seed: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MonteCarloConfig":
        data = data or {}
        return cls(
            runs=int(data.get("runs", 1000)),
            risk_profile=str(data.get("risk_profile", "balanced")),
            base_seed=int(data.get("base_seed", 0)),
        )


@dataclass(frozen=True)
class LockedInSettings:
    """LIRA conversion rules.

    At ``conversion_age`` the LIRA is converted: ``unlocking_share`` of it moves
    to the RRSP and the rest to the LIF.  ``cansim_rate`` sets the LIF maximum.
    """

    conversion_age: int = 71
    unlocking_share: float = 0.5
    cansim_rate: float = 0.035

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LockedInSettings":
        data = data or {}
        return cls(
            conversion_age=int(data.get("conversion_age", 71)),
            unlocking_share=float(data.get("unlocking_share", 0.5)),
            cansim_rate=float(data.get("cansim_rate", 0.035)),
        )


@dataclass(frozen=True)
class SpouseSettings:
    enabled: bool = False
    birth_year: Optional[int] = None
    cpp_income: float = 0.0
    oas_income: float = 0.0
    pension_income: float = 0.0
    base_income: float = 0.0
    optimize_cpp_sharing: bool = False
    use_spouse_age_for_rrif: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SpouseSettings":
        data = data or {}
        birth_year = data.get("birth_year")
        return cls(
            enabled=bool(data.get("enabled", False)),
            birth_year=None if birth_year is None else int(birth_year),
            cpp_income=float(data.get("cpp_income", 0.0)),
            oas_income=float(data.get("oas_income", 0.0)),
            pension_income=float(data.get("pension_income", 0.0)),
            base_income=float(data.get("base_income", 0.0)),
            optimize_cpp_sharing=bool(data.get("optimize_cpp_sharing", False)),
            use_spouse_age_for_rrif=bool(data.get("use_spouse_age_for_rrif", False)),
        )


@dataclass(frozen=True)
class Scenario:
    province: str
    birth_year: int
    start_year: int
    end_year: int
    accounts: Dict[str, AccountConfig]
    asset_profiles: Dict[str, AssetProfile]
    portfolio: Portfolio
    name: str = "Scenario"
    general_inflation: float = 0.025
    tax_inflation_rate: float = 0.025
    chequing: float = 0.0
    chequing_min: float = 0.0
    chequing_max: float = 50000.0
    tfsa_room: float = 0.0
    incomes: Tuple[RecurringItem, ...] = ()
    expenses: Tuple[RecurringItem, ...] = ()
    one_time_events: Tuple[OneTimeEvent, ...] = ()
    market_crashes: Tuple[MarketCrash, ...] = ()
    rebalance_threshold: float = 0.0
    expert_mode: ExpertMode = field(default_factory=ExpertMode)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    spouse: SpouseSettings = field(default_factory=SpouseSettings)
    locked_in: LockedInSettings = field(default_factory=LockedInSettings)

    @property
    def total_initial_assets(self) -> float:
        return sum(acct.total for acct in self.accounts.values()) + self.chequing

    def age_in(self, year: int) -> int:
        return year - self.birth_year

    @classmethod
    def from_dict(cls, data: Dict[str, Any], validate: bool = True) -> "Scenario":
        """Build a scenario from a plain dictionary.

        Structural problems (wrong types, missing required fields) raise
        :class:`ScenarioError` immediately; semantic checks run afterwards
        unless ``validate`` is false.
        """
        data = _expect_dict(data, "scenario")
        end_year = int(_require(data, "end_year", "scenario"))

        raw_accounts = _expect_dict(data.get("accounts", {}), "scenario.accounts")
        accounts = {
            kind: AccountConfig.from_dict(raw_accounts.get(kind, {}), f"scenario.accounts.{kind}")
            for kind in ACCOUNT_KINDS
        }
        raw_profiles = data.get("asset_profiles") or DEFAULT_ASSET_PROFILES
        profiles = {
            key: AssetProfile.from_dict(key, _expect_dict(value, f"scenario.asset_profiles.{key}"))
            for key, value in _expect_dict(raw_profiles, "scenario.asset_profiles").items()
        }

        def items(key: str) -> Tuple[RecurringItem, ...]:
            raw = _expect_list(data.get(key, []), f"scenario.{key}")
            return tuple(RecurringItem.from_dict(it, f"scenario.{key}[{i}]", end_year) for i, it in enumerate(raw))

        events = _expect_list(data.get("one_time_events", []), "scenario.one_time_events")
        crashes = _expect_list(data.get("market_crashes", []), "scenario.market_crashes")
        scenario = cls(
            name=str(data.get("name", "Scenario")),
            province=str(data.get("province", "ON")).upper(),
            birth_year=int(_require(data, "birth_year", "scenario")),
            start_year=int(_require(data, "start_year", "scenario")),
            end_year=end_year,
            general_inflation=float(data.get("general_inflation", 0.025)),
            tax_inflation_rate=float(data.get("tax_inflation_rate", 0.025)),
            accounts=accounts,
            chequing=float(data.get("chequing", 0.0)),
            chequing_min=float(data.get("chequing_min", 0.0)),
            chequing_max=float(data.get("chequing_max", 50000.0)),
            tfsa_room=float(data.get("tfsa_room", 0.0)),
            asset_profiles=profiles,
            portfolio=Portfolio.from_dict(data.get("portfolio")),
            incomes=items("incomes"),
            expenses=items("expenses"),
            one_time_events=tuple(OneTimeEvent.from_dict(e, f"scenario.one_time_events[{i}]") for i, e in enumerate(events)),
            market_crashes=tuple(MarketCrash.from_dict(c, f"scenario.market_crashes[{i}]") for i, c in enumerate(crashes)),
            rebalance_threshold=float(data.get("rebalance_threshold", 0.0)),
            expert_mode=ExpertMode.from_dict(data.get("expert_mode")),
            monte_carlo=MonteCarloConfig.from_dict(data.get("monte_carlo")),
            spouse=SpouseSettings.from_dict(data.get("spouse")),
            locked_in=LockedInSettings.from_dict(data.get("locked_in")),
        )
        if validate:
            scenario.validate()
        return scenario

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        if self.start_year <= self.birth_year:
            errors.append("start_year must be after birth_year")
        if self.end_year <= self.start_year:
            errors.append("end_year must be after start_year")
        if self.province not in provinces():
            errors.append(f"province {self.province!r} is not supported")

        for kind, acct in self.accounts.items():
            for asset, amount in acct.holdings.items():
                if amount < 0:
                    errors.append(f"accounts.{kind}.holdings.{asset} cannot be negative")
                if asset not in self.asset_profiles:
                    errors.append(f"accounts.{kind}.holdings.{asset} has no asset profile")
            for asset, amount in acct.acb.items():
                if amount < 0:
                    errors.append(f"accounts.{kind}.acb.{asset} cannot be negative")
            if acct.acb_ratio is not None and acct.acb_ratio < 0:
                errors.append(f"accounts.{kind}.acb_ratio cannot be negative")
        for key in ("chequing", "chequing_min", "tfsa_room"):
            if getattr(self, key) < 0:
                errors.append(f"{key} cannot be negative")
        if self.chequing_max <= self.chequing_min:
            errors.append("chequing_max must be greater than chequing_min")

        compositions = {
            "portfolio.start_composition": self.portfolio.start_composition,
            "portfolio.end_composition": self.portfolio.end_composition,
        }
        for kind, comp in self.portfolio.account_end_compositions.items():
            if kind not in ACCOUNT_KINDS:
                errors.append(f"portfolio.account_end_compositions.{kind} is not an account")
            compositions[f"portfolio.account_end_compositions.{kind}"] = comp
        for label, comp in compositions.items():
            total = sum(comp.values())
            if abs(total - 1.0) > 1e-4:
                errors.append(f"{label} must add up to 1.0 (got {total:.4f})")
            for asset, weight in comp.items():
                if weight < 0:
                    errors.append(f"{label}.{asset} cannot be negative")
                if asset not in self.asset_profiles:
                    errors.append(f"{label}.{asset} has no asset profile")

        for key, profile in self.asset_profiles.items():
            if profile.volatility < 0:
                errors.append(f"volatility for {profile.name} cannot be negative")

        for item in self.incomes + self.expenses:
            if item.end_year < item.start_year:
                errors.append(f"item '{item.type}': end_year cannot be before start_year")
            if item.amount < 0:
                errors.append(f"item '{item.type}': amount cannot be negative")
        for event in self.one_time_events:
            if event.amount < 0:
                errors.append(f"one-time event '{event.name}': amount cannot be negative")
            if event.type not in EVENT_TYPES:
                errors.append(f"one-time event '{event.name}': unknown type {event.type!r}")
            elif event.is_income and event.taxation_type not in TAXATION_TYPES:
                errors.append(f"one-time event '{event.name}': unknown taxation_type {event.taxation_type!r}")
        for crash in self.market_crashes:
            if crash.duration < 1:
                errors.append(f"market crash in {crash.start_year}: duration must be at least 1 year")
            for asset, drop in crash.impact.items():
                if not 0.0 <= drop < 1.0:
                    errors.append(f"market crash in {crash.start_year}: drop for {asset} must be in [0, 1)")

        if self.rebalance_threshold < 0:
            errors.append("rebalance_threshold cannot be negative")
        if self.expert_mode.look_ahead_years < 1:
            errors.append("expert_mode.look_ahead_years must be at least 1")
        if self.monte_carlo.runs < 1:
            errors.append("monte_carlo.runs must be at least 1")
        if self.monte_carlo.risk_profile not in RISK_PROFILES:
            errors.append(f"monte_carlo.risk_profile {self.monte_carlo.risk_profile!r} is not one of {RISK_PROFILES}")
        if self.spouse.enabled and self.spouse.birth_year is None:
            errors.append("spouse.birth_year is required when spouse is enabled")

        locked = self.locked_in
        if not 0.0 <= locked.unlocking_share <= 1.0:
            errors.append("locked_in.unlocking_share must be between 0 and 1")
        if locked.cansim_rate < 0:
            errors.append("locked_in.cansim_rate cannot be negative")
        if not LIF_START_AGE <= locked.conversion_age <= RRIF_START_AGE:
            errors.append(f"locked_in.conversion_age must be between {LIF_START_AGE} and {RRIF_START_AGE}")
        return errors

    def validate(self) -> None:
        errors = self.validation_errors()
        if errors:
            raise ScenarioError(errors)


def load_scenario(path) -> Scenario:
    """Read and validate a scenario JSON file."""
    p = Path(path)
    with open(p, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ScenarioError(f"{p}: invalid JSON ({exc})") from exc
    scenario = Scenario.from_dict(raw)
    logger.info("loaded scenario %r from %s", scenario.name, p)
    return scenario


__all__ = [
    "ACCOUNT_KINDS",
    "RISK_PROFILES",
    "ScenarioError",
    "AssetProfile",
    "AccountConfig",
    "RecurringItem",
    "OneTimeEvent",
    "MarketCrash",
    "Portfolio",
    "ExpertMode",
    "MonteCarloConfig",
    "SpouseSettings",
    "LockedInSettings",
    "Scenario",
    "load_scenario",
]
