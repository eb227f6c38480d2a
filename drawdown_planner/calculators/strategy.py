"""Withdrawal allocation across the RRSP, TFSA and non-registered accounts.

Each year the simulation needs a certain amount of cash.  Every account has a
per-dollar cost of withdrawing from it:

* RRSP: the marginal tax rate, less a strategic bonus that favours drawing the
  deferred account down early, less a look-ahead adjustment when future
  forced income is expected to be higher than today's;
* non-registered: marginal rate times the taxable part of each dollar sold
  (unrealized gain fraction times the inclusion rate);
* TFSA: a flat penalty, so it is spent last.

The cheapest allocation is found by a three-variable linear program.  Because
the tax on the allocation also has to be withdrawn, the LP is re-solved with
the tax estimate of the previous allocation until the allocation stops moving
or three iterations have run.  Anything the LP leaves uncovered is topped up
greedily, TFSA first, re-pricing the tax after every pass.

Example
-------

>>> strategic_parameters(age=65, total_assets=1e6, rrsp_ratio=0.3, risk_profile="balanced")
{'rrsp_bonus': 0.02, 'tfsa_penalty': 0.07}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

import numpy as np
from scipy.optimize import linprog

from . import rrif, taxes
from .accounts import Balances

if TYPE_CHECKING:
    from ..scenario import ExpertMode, Scenario

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 3
MAX_TOP_UP_PASSES = 50
_SHORTFALL_TOLERANCE = 1e-6
_MIN_NET_RATE = 0.05
DEFAULT_LOOK_AHEAD_YEARS = 7

RISK_PROFILE_PARAMETERS: Dict[str, Dict[str, float]] = {
    "conservative": {"rrsp_bonus": 0.03, "tfsa_penalty": 0.10},
    "balanced": {"rrsp_bonus": 0.02, "tfsa_penalty": 0.07},
    "aggressive": {"rrsp_bonus": 0.01, "tfsa_penalty": 0.05},
}
RISK_PROFILES = tuple(RISK_PROFILE_PARAMETERS)

# LP variable order
_ORDER = ("rrsp", "tfsa", "non_reg")
# Greedy top-up order when the LP falls short
_FALLBACK_ORDER = ("tfsa", "non_reg", "rrsp")


@dataclass(frozen=True)
class WithdrawalContext:
    """Everything the allocator needs to price a withdrawal for one year.

    ``other_income`` is this year's taxable income before withdrawals,
    excluding OAS which is passed separately because it drives the clawback.
    ``locked_in_income`` is the LIF payment already scheduled for the year;
    it is pension income like an RRIF withdrawal.  ``rrif_age`` is the age the
    RRIF minimum is computed at when it differs from ``age``.
    """

    scenario: "Scenario"
    year: int
    age: int
    params: taxes.TaxParameters
    other_income: float = 0.0
    oas_income: float = 0.0
    rrif_minimum: float = 0.0
    spouse_income: Optional[taxes.IncomeSources] = None
    spouse_age: Optional[int] = None
    locked_in_income: float = 0.0
    rrif_age: Optional[int] = None


@dataclass
class WithdrawalPlan:
    withdrawals: Dict[str, float]
    estimated_tax: float
    decision_log: List[Dict[str, object]] = field(default_factory=list)
    marginal_rate: float = 0.0
    split_ratio: float = 0.0

    @property
    def total(self) -> float:
        return sum(self.withdrawals.values())


def strategic_parameters(
    age: int,
    total_assets: float,
    rrsp_ratio: float,
    risk_profile: str = "balanced",
    expert_mode: Optional["ExpertMode"] = None,
) -> Dict[str, float]:
    """RRSP bonus and TFSA penalty used to price withdrawals.

    Values come from the risk-profile table; an enabled expert mode replaces
    either one with its own setting.  A portfolio that is mostly RRSP before
    RRIF conversion age gets 0.01 extra bonus to start the drawdown sooner.
    """
    try:
        base = RISK_PROFILE_PARAMETERS[risk_profile]
    except KeyError:
        raise ValueError(f"Unknown risk profile: {risk_profile!r}") from None
    rrsp_bonus = base["rrsp_bonus"]
    tfsa_penalty = base["tfsa_penalty"]

    if expert_mode is not None and expert_mode.enabled:
        if expert_mode.rrsp_withdrawal_bonus is not None:
            rrsp_bonus = expert_mode.rrsp_withdrawal_bonus
        if expert_mode.tfsa_withdrawal_penalty is not None:
            tfsa_penalty = expert_mode.tfsa_withdrawal_penalty

    if total_assets > 0 and rrsp_ratio > 0.5 and age < rrif.RRIF_START_AGE:
        rrsp_bonus += 0.01
    return {"rrsp_bonus": round(rrsp_bonus, 10), "tfsa_penalty": tfsa_penalty}


def _scheduled_income(scenario: "Scenario", year: int) -> float:
    return sum(item.amount_for(year) for item in scenario.incomes)


def look_ahead_adjustment(
    age: int,
    year: int,
    rrsp_balance: float,
    current_base_income: float,
    scenario: "Scenario",
) -> float:
    """Negative RRSP cost adjustment when future base income looks higher.

    Projects scheduled income plus the RRIF minimum on today's RRSP balance
    for the look-ahead window.  An average more than 30% above the current
    base income gives -0.05, more than 15% gives -0.02.
    """
    expert = scenario.expert_mode
    window = expert.look_ahead_years if expert.enabled else DEFAULT_LOOK_AHEAD_YEARS
    projected = [
        _scheduled_income(scenario, year + i) + rrif.minimum_withdrawal(rrsp_balance, age + i)
        for i in range(1, window + 1)
    ]
    average = sum(projected) / len(projected)
    if average > current_base_income * 1.30:
        return -0.05
    if average > current_base_income * 1.15:
        return -0.02
    return 0.0


def _estimate_tax(plan: Dict[str, float], gain_ratio: float, context: WithdrawalContext) -> taxes.JointTaxResult:
    params = context.params
    client = taxes.IncomeSources(
        base=context.other_income,
        rrif=plan["rrsp"] + context.locked_in_income,
        capital_gains=max(0.0, gain_ratio) * plan["non_reg"] * params.inclusion_rate,
        oas=context.oas_income,
    )
    return taxes.optimize_joint_tax(
        client,
        context.spouse_income,
        context.age,
        params,
        context.scenario.province,
        spouse_age=context.spouse_age,
    )


def _solve(costs: Dict[str, float], required: float, lower: Dict[str, float], upper: Dict[str, float]):
    c = np.array([costs[k] for k in _ORDER])
    a_ub = -np.ones((1, len(_ORDER)))
    b_ub = np.array([-required])
    bounds = [(lower[k], upper[k]) for k in _ORDER]
    return linprog(c, A_ub=a_ub, b_ub=b_ub, bounds=bounds, method="highs")


def find_optimal_withdrawals(amount_needed: float, balances: Balances, context: WithdrawalContext) -> WithdrawalPlan:
    """Allocate ``amount_needed`` plus the tax it triggers across the accounts.

    Parameters
    ----------
    amount_needed : float
        Cash required this year before tax, already floored at the RRIF
        minimum.
    balances : Balances
        Start-of-year account balances; each withdrawal is bounded by them.
    context : WithdrawalContext
        Year, age, tax rules and the income the withdrawal is stacked on.

    Returns
    -------
    WithdrawalPlan
        Rounded withdrawals per account, the tax estimate of the final
        allocation and a decision log.  An infeasible LP never raises: the
        allocation falls back to the greedy top-up.
    """
    scenario = context.scenario
    upper = {k: max(0.0, balances.get(k)) for k in _ORDER}
    lower = {k: 0.0 for k in _ORDER}
    lower["rrsp"] = min(context.rrif_minimum, upper["rrsp"])

    gain_ratio = (balances.non_reg - balances.non_reg_acb) / balances.non_reg if balances.non_reg > 0 else 0.0
    invested = balances.unlocked
    rrsp_ratio = balances.rrsp / invested if invested > 0 else 0.0
    strategic = strategic_parameters(
        context.age, invested, rrsp_ratio, scenario.monte_carlo.risk_profile, scenario.expert_mode
    )
    current_base_income = _scheduled_income(scenario, context.year)
    rrif_age = context.age if context.rrif_age is None else context.rrif_age
    adjustment = look_ahead_adjustment(rrif_age, context.year, balances.rrsp, current_base_income, scenario)

    plan = {k: 0.0 for k in _ORDER}
    log: List[Dict[str, object]] = []
    converged = False
    feasible = True

    for iteration in range(1, MAX_ITERATIONS + 1):
        tax_result = _estimate_tax(plan, gain_ratio, context)
        mtr = tax_result.marginal_rate
        costs = {
            "rrsp": mtr - strategic["rrsp_bonus"] + adjustment,
            "tfsa": strategic["tfsa_penalty"],
            "non_reg": mtr * max(0.0, gain_ratio) * context.params.inclusion_rate,
        }
        required = amount_needed + tax_result.total_tax
        res = _solve(costs, required, lower, upper)
        feasible = bool(res.status == 0)
        if feasible:
            new_plan = {k: min(upper[k], max(lower[k], float(round(x)))) for k, x in zip(_ORDER, res.x)}
        else:
            new_plan = {k: 0.0 for k in _ORDER}
        logger.debug(
            "year %d iteration %d: need %.0f + tax %.0f, costs %s -> %s (%s)",
            context.year, iteration, amount_needed, tax_result.total_tax, costs, new_plan, res.message,
        )
        if new_plan == plan:
            converged = True
            if feasible:
                reason = f"Iterative solver found a stable allocation after {iteration} iteration(s)."
            else:
                reason = "LP infeasible: balances cannot cover the need and its tax."
            log.append({
                "reason": reason,
                "solver_feasible": feasible,
            })
            break
        plan = new_plan

    if not converged:
        tax_result = _estimate_tax(plan, gain_ratio, context)
        logger.warning(
            "withdrawal allocation for %d did not stabilize after %d iterations; using last result",
            context.year, MAX_ITERATIONS,
        )
        log.append({
            "reason": f"WARNING: solver did not stabilize after {MAX_ITERATIONS} iterations. Using last result.",
            "solver_feasible": feasible,
        })

    shortfall = amount_needed + tax_result.total_tax - sum(plan.values())
    if shortfall > _SHORTFALL_TOLERANCE:
        passes = 0
        while shortfall > _SHORTFALL_TOLERANCE and passes < MAX_TOP_UP_PASSES:
            passes += 1
            # each dollar topped up from an account also raises the tax at that account's rate
            rates = {
                "rrsp": tax_result.marginal_rate,
                "non_reg": tax_result.marginal_rate * max(0.0, gain_ratio) * context.params.inclusion_rate,
                "tfsa": 0.0,
            }
            remaining = shortfall
            for kind in _FALLBACK_ORDER:
                if remaining <= 0:
                    break
                room = upper[kind] - plan[kind]
                if room <= 0:
                    continue
                gross = remaining / max(1.0 - rates[kind], _MIN_NET_RATE)
                top_up = min(gross, room)
                plan[kind] += top_up
                remaining -= top_up * (1.0 - rates[kind])
            tax_result = _estimate_tax(plan, gain_ratio, context)
            new_shortfall = amount_needed + tax_result.total_tax - sum(plan.values())
            if new_shortfall >= shortfall:
                # no account has room left
                shortfall = new_shortfall
                break
            shortfall = new_shortfall
        unfunded = max(0.0, shortfall) if shortfall > _SHORTFALL_TOLERANCE else 0.0
        if unfunded > 0:
            logger.info("year %d: %.2f of the need and its tax could not be funded", context.year, unfunded)
        log.append({
            "reason": "Shortfall corrected greedily (TFSA, non-registered, RRSP).",
            "solver_feasible": feasible,
            "unfunded": unfunded,
            "passes": passes,
        })

    return WithdrawalPlan(
        withdrawals=plan,
        estimated_tax=tax_result.total_tax,
        decision_log=log,
        marginal_rate=tax_result.marginal_rate,
        split_ratio=tax_result.split_ratio,
    )


__all__ = [
    "RISK_PROFILES",
    "RISK_PROFILE_PARAMETERS",
    "WithdrawalContext",
    "WithdrawalPlan",
    "strategic_parameters",
    "look_ahead_adjustment",
    "find_optimal_withdrawals",
]
