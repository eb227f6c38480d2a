"""Account holdings and adjusted cost base (ACB) bookkeeping.

Five investment accounts are tracked per asset class:

* ``rrsp`` – tax-deferred; every dollar withdrawn is taxable income.
* ``lira`` – locked-in and tax-deferred; nothing can be withdrawn until it
  is converted, partly into the RRSP and partly into the ``lif``.
* ``lif`` – locked-in payout account; withdrawals are taxable and held
  between an annual minimum and maximum.
* ``tfsa`` – tax-free; withdrawals are not taxed and restore contribution room.
* ``non_reg`` – taxable; only the gain portion of a sale is taxed, so the ACB
  of every asset is tracked next to its market value.

The functions here mutate an :class:`AccountState` in place and report the
cash-flow and tax consequences of the operation.  Callers that need a
snapshot take a copy first.

Example
-------

>>> acct = AccountState("non_reg", {"growth": 100.0}, {"growth": 60.0})
>>> withdraw(acct, 50.0)
WithdrawalOutcome(amount=50.0, realized_gain=20.0)
>>> acct.total, acct.total_acb
(50.0, 30.0)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from ..scenario import AccountConfig, AssetProfile, Scenario

logger = logging.getLogger(__name__)

ACCOUNT_KINDS = ("rrsp", "tfsa", "non_reg", "lira", "lif")
LOCKED_IN_KINDS = ("lira", "lif")
TAXABLE_ACCOUNT = "non_reg"
_TOLERANCE = 1e-9


@dataclass
class AccountState:
    kind: str
    holdings: Dict[str, float] = field(default_factory=dict)
    acb: Dict[str, float] = field(default_factory=dict)

    @property
    def taxable(self) -> bool:
        return self.kind == TAXABLE_ACCOUNT

    @property
    def total(self) -> float:
        return sum(self.holdings.values())

    @property
    def total_acb(self) -> float:
        return sum(self.acb.values()) if self.taxable else 0.0

    @property
    def gain_ratio(self) -> float:
        """Unrealized gain per dollar of market value (taxable account only)."""
        total = self.total
        if not self.taxable or total <= 0:
            return 0.0
        return (total - self.total_acb) / total

    def composition(self) -> Dict[str, float]:
        total = self.total
        if total <= 0:
            return {}
        return {asset: value / total for asset, value in self.holdings.items()}

    def copy(self) -> "AccountState":
        return AccountState(self.kind, dict(self.holdings), dict(self.acb))

    @classmethod
    def from_config(cls, kind: str, config: "AccountConfig") -> "AccountState":
        acb = dict(config.acb) if kind == TAXABLE_ACCOUNT else {}
        return cls(kind, dict(config.holdings), acb)


@dataclass(frozen=True)
class Balances:
    """Point-in-time totals of every account plus chequing."""

    rrsp: float = 0.0
    tfsa: float = 0.0
    non_reg: float = 0.0
    non_reg_acb: float = 0.0
    chequing: float = 0.0
    lira: float = 0.0
    lif: float = 0.0

    @property
    def unlocked(self) -> float:
        return self.rrsp + self.tfsa + self.non_reg

    @property
    def invested(self) -> float:
        return self.rrsp + self.tfsa + self.non_reg + self.lira + self.lif

    @property
    def total(self) -> float:
        return self.invested + self.chequing

    def get(self, kind: str) -> float:
        return getattr(self, kind)

    @classmethod
    def from_accounts(cls, accounts: Mapping[str, AccountState], chequing: float) -> "Balances":
        return cls(
            rrsp=accounts["rrsp"].total,
            tfsa=accounts["tfsa"].total,
            non_reg=accounts["non_reg"].total,
            non_reg_acb=accounts["non_reg"].total_acb,
            chequing=chequing,
            lira=accounts["lira"].total,
            lif=accounts["lif"].total,
        )


@dataclass(frozen=True)
class WithdrawalOutcome:
    amount: float
    realized_gain: float = 0.0


@dataclass(frozen=True)
class GrowthOutcome:
    """Income produced by one year of growth.

    ``dividends`` is the cash paid out of the taxable account, split into
    ``canadian_dividends`` (eligible for the gross-up and credit) and
    ``foreign_income`` (taxed as ordinary income).  Sheltered accounts keep
    their dividends, reported as ``reinvested``.
    """

    dividends: float = 0.0
    canadian_dividends: float = 0.0
    foreign_income: float = 0.0
    reinvested: float = 0.0


def withdraw(account: AccountState, amount: float) -> WithdrawalOutcome:
    """Sell ``amount`` pro rata across holdings, capped at the account total."""
    total = account.total
    amount = min(max(0.0, amount), total)
    if amount <= 0 or total <= 0:
        return WithdrawalOutcome(0.0, 0.0)

    fraction = amount / total
    realized = 0.0
    if account.taxable:
        realized = (total - account.total_acb) / total * amount
        for asset in account.acb:
            account.acb[asset] *= 1.0 - fraction
    for asset in account.holdings:
        account.holdings[asset] *= 1.0 - fraction
    return WithdrawalOutcome(amount, realized)


def grow(account: AccountState, rates: Mapping[str, float], profiles: Mapping[str, "AssetProfile"]) -> GrowthOutcome:
    """Apply one year of dividends and appreciation to every holding.

    Dividends are computed on the opening value.  ``rates`` maps asset to this
    year's appreciation rate; assets missing from it use the profile's
    expected growth.
    """
    paid = canadian = foreign = reinvested = 0.0
    for asset, value in list(account.holdings.items()):
        if value <= 0:
            continue
        profile = profiles[asset]
        dividend = value * profile.dividend
        grown = max(0.0, value * (1.0 + rates.get(asset, profile.growth)))
        if account.taxable:
            paid += dividend
            if profile.canadian_dividend:
                canadian += dividend
            else:
                foreign += dividend
        else:
            grown += dividend
            reinvested += dividend
        account.holdings[asset] = grown
    return GrowthOutcome(dividends=paid, canadian_dividends=canadian, foreign_income=foreign, reinvested=reinvested)


def _normalized(composition: Mapping[str, float]) -> Dict[str, float]:
    total = sum(w for w in composition.values() if w > 0)
    if total <= 0:
        return {}
    return {asset: w / total for asset, w in composition.items() if w > 0}


def target_composition(scenario: "Scenario", year: int, account_kind: Optional[str] = None) -> Dict[str, float]:
    """Target weights for ``year``.

    An account with an explicit end composition uses it as a fixed target.
    Otherwise the weights move linearly from the start composition to the end
    composition over the plan horizon.
    """
    portfolio = scenario.portfolio
    if account_kind is not None and account_kind in portfolio.account_end_compositions:
        return _normalized(portfolio.account_end_compositions[account_kind])

    start, end = portfolio.start_composition, portfolio.end_composition
    if year <= scenario.start_year:
        return _normalized(start)
    if year >= scenario.end_year:
        return _normalized(end)
    progress = (year - scenario.start_year) / (scenario.end_year - scenario.start_year)
    blended = {
        asset: start.get(asset, 0.0) + (end.get(asset, 0.0) - start.get(asset, 0.0)) * progress
        for asset in sorted(set(start) | set(end))
    }
    return _normalized(blended)


def rebalance(account: AccountState, target: Mapping[str, float], threshold: float = 0.0) -> float:
    """Trade the account back to ``target`` weights and return the realized gain.

    Nothing happens unless some asset's weight differs from its target by more
    than ``threshold``.  Overweight assets are sold down to their target value
    and the proceeds buy the underweight assets, so the account total does not
    change.  In the taxable account sales realize gains against each asset's
    own ACB and purchases add to ACB.
    """
    total = account.total
    target = _normalized(target)
    if total <= 0 or not target:
        return 0.0

    current = account.composition()
    assets = sorted(set(current) | set(target))
    drift = max(abs(current.get(a, 0.0) - target.get(a, 0.0)) for a in assets)
    if drift <= threshold + _TOLERANCE:
        return 0.0

    realized = 0.0
    for asset in assets:
        value = account.holdings.get(asset, 0.0)
        goal = total * target.get(asset, 0.0)
        if value > goal:
            sold = value - goal
            if account.taxable:
                cost = account.acb.get(asset, 0.0)
                sold_cost = cost * sold / value
                realized += sold - sold_cost
                account.acb[asset] = cost - sold_cost
        elif goal > value and account.taxable:
            account.acb[asset] = account.acb.get(asset, 0.0) + (goal - value)
        if goal > 0:
            account.holdings[asset] = goal
        else:
            account.holdings.pop(asset, None)
            account.acb.pop(asset, None)
    logger.debug("rebalanced %s (drift %.4f, realized %.2f)", account.kind, drift, realized)
    return realized


def _invest(account: AccountState, amount: float, composition: Mapping[str, float]) -> None:
    weights = _normalized(composition) or account.composition()
    if not weights:
        raise ValueError(f"no composition to invest {amount:.2f} into {account.kind}")
    for asset, weight in weights.items():
        part = amount * weight
        account.holdings[asset] = account.holdings.get(asset, 0.0) + part
        if account.taxable:
            account.acb[asset] = account.acb.get(asset, 0.0) + part


def contribute_surplus(
    amount: float,
    tfsa: AccountState,
    non_reg: AccountState,
    tfsa_room: float,
    composition: Mapping[str, float],
) -> Tuple[float, float]:
    """Invest surplus cash: TFSA first up to the available room, then non-registered.

    Returns ``(to_tfsa, to_non_reg)``.
    """
    if amount <= 0:
        return 0.0, 0.0
    to_tfsa = min(amount, max(0.0, tfsa_room))
    to_non_reg = amount - to_tfsa
    if to_tfsa > 0:
        _invest(tfsa, to_tfsa, composition)
    if to_non_reg > 0:
        _invest(non_reg, to_non_reg, composition)
    return to_tfsa, to_non_reg


def transfer(source: AccountState, destination: AccountState, fraction: float) -> float:
    """Move ``fraction`` of every holding from ``source`` into ``destination``.

    Used for tax-free moves between deferred accounts, so no ACB is carried.
    Returns the amount moved.
    """
    fraction = min(1.0, max(0.0, fraction))
    moved = 0.0
    for asset, value in list(source.holdings.items()):
        part = value * fraction
        if part <= 0:
            continue
        destination.holdings[asset] = destination.holdings.get(asset, 0.0) + part
        remaining = value - part
        if remaining > _TOLERANCE:
            source.holdings[asset] = remaining
        else:
            source.holdings.pop(asset)
        moved += part
    return moved


__all__ = [
    "ACCOUNT_KINDS",
    "LOCKED_IN_KINDS",
    "AccountState",
    "Balances",
    "WithdrawalOutcome",
    "GrowthOutcome",
    "withdraw",
    "grow",
    "target_composition",
    "rebalance",
    "contribute_surplus",
    "transfer",
]
