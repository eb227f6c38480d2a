"""Year-by-year drawdown simulation for a single run.

Every year runs the same steps, in order:

1. convert the LIRA once the holder reaches the conversion age, then index
   recurring incomes and expenses and pick up the year's one-time events;
2. solvency check: stop with ``DEPLETED`` if everything that can be spent
   plus this year's income cannot cover this year's spending and last year's
   tax bill (the LIRA and any LIF balance above its maximum are locked);
3. roll TFSA contribution room forward;
4. pay the LIF minimum; required withdrawal = max(remaining cash shortfall,
   RRIF minimum);
5. allocate the withdrawal across accounts and sell, drawing on the LIF up to
   its maximum for anything the other accounts cannot cover;
6. settle chequing (income in, spending and last year's tax out);
7. grow every account;
8. rebalance every account to its target composition;
9. compute this year's tax, payable next year;
10. pay taxable-account dividends into chequing and sweep any excess over
    ``chequing_max`` plus the upcoming bill into TFSA / non-registered;
11. record the year.

Example
-------

>>> from drawdown_planner.scenario import Scenario
>>> result = run_single_simulation(Scenario.from_dict({
...     "birth_year": 1960, "start_year": 2025, "end_year": 2026,
...     "accounts": {"tfsa": {"holdings": {"gic": 100000}}},
... }))
>>> result.status.value, len(result.yearly_data)
('SUCCESS', 2)
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

import pandas as pd

from . import rrif, taxes
from .accounts import (
    ACCOUNT_KINDS,
    AccountState,
    Balances,
    contribute_surplus,
    grow,
    rebalance,
    target_composition,
    transfer,
    withdraw,
)
from .returns import MarketState, ReturnGenerator
from .strategy import WithdrawalContext, find_optimal_withdrawals

if TYPE_CHECKING:
    from ..scenario import Scenario

logger = logging.getLogger(__name__)

TFSA_BASE_LIMIT = 7000.0
TFSA_LIMIT_STEP = 500.0
OAS_INCOME_TYPE = "OAS"
CPP_INCOME_TYPE = "CPP"

# accounts the withdrawal optimizer allocates across
_PLANNED_KINDS = ("rrsp", "tfsa", "non_reg")


class SimulationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    DEPLETED = "DEPLETED"
    NO_INITIAL_FUNDS = "NO_INITIAL_FUNDS"


@dataclass(frozen=True)
class YearlyRecord:
    year: int
    age: int
    start_balances: Balances
    end_balances: Balances
    start_total: float
    end_total: float
    income: float
    expenses: float
    one_time_income: float
    one_time_expense: float
    tax_paid: float
    tax_owed: float
    oas_clawback: float
    marginal_rate: float
    split_ratio: float
    rrif_minimum: float
    withdrawals: Dict[str, float]
    lif_minimum: float
    dividend_income: float
    realized_capital_gains: float
    tfsa_contribution: float
    non_reg_contribution: float
    tfsa_room: float
    tax_detail: Dict[str, object] = field(default_factory=dict)
    decision_log: List[Dict[str, object]] = field(default_factory=list)

    @property
    def total_withdrawal(self) -> float:
        return sum(self.withdrawals.values())


@dataclass
class SimulationResult:
    status: SimulationStatus
    yearly_data: List[YearlyRecord] = field(default_factory=list)
    depletion_year: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status is SimulationStatus.SUCCESS

    @property
    def final_balance(self) -> float:
        return self.yearly_data[-1].end_total if self.yearly_data else 0.0

    def balance_path(self) -> List[float]:
        return [r.end_total for r in self.yearly_data]

    def to_frame(self) -> pd.DataFrame:
        """One row per simulated year, indexed by year."""
        rows = []
        for r in self.yearly_data:
            row = {
                "year": r.year,
                "age": r.age,
                "start_total": r.start_total,
                "end_total": r.end_total,
                "income": r.income,
                "expenses": r.expenses,
                "one_time_income": r.one_time_income,
                "one_time_expense": r.one_time_expense,
                "tax_paid": r.tax_paid,
                "tax_owed": r.tax_owed,
                "oas_clawback": r.oas_clawback,
                "marginal_rate": r.marginal_rate,
                "split_ratio": r.split_ratio,
                "rrif_minimum": r.rrif_minimum,
                "lif_minimum": r.lif_minimum,
                "dividend_income": r.dividend_income,
                "realized_capital_gains": r.realized_capital_gains,
                "tfsa_contribution": r.tfsa_contribution,
                "non_reg_contribution": r.non_reg_contribution,
                "tfsa_room": r.tfsa_room,
            }
            for kind in ACCOUNT_KINDS:
                row[f"withdrawal_{kind}"] = r.withdrawals.get(kind, 0.0)
            for key, value in asdict(r.end_balances).items():
                row[f"end_{key}"] = value
            rows.append(row)
        return pd.DataFrame(rows).set_index("year") if rows else pd.DataFrame()


def tfsa_annual_limit(year: int, inflation_rate: float) -> float:
    """TFSA dollar limit for ``year``, indexed from the base year and rounded to the nearest $500."""
    factor = (1.0 + inflation_rate) ** max(0, year - taxes.base_year())
    return math.floor(TFSA_BASE_LIMIT * factor / TFSA_LIMIT_STEP + 0.5) * TFSA_LIMIT_STEP


def _cpp_shift(scenario: "Scenario", year: int, client_cpp: float) -> float:
    """CPP moved from the client to the spouse when the couple shares CPP.

    Sharing pools both pensions and assigns half to each, so the shift is
    negative when the spouse has the larger pension.
    """
    spouse = scenario.spouse
    if not (spouse.enabled and spouse.optimize_cpp_sharing):
        return 0.0
    spouse_cpp = spouse.cpp_income * _spouse_factor(scenario, year)
    return (client_cpp - spouse_cpp) / 2.0


def _spouse_factor(scenario: "Scenario", year: int) -> float:
    return (1.0 + scenario.general_inflation) ** max(0, year - scenario.start_year)


def _spouse_sources(scenario: "Scenario", year: int, cpp_shift: float = 0.0) -> Optional[taxes.IncomeSources]:
    spouse = scenario.spouse
    if not spouse.enabled:
        return None
    factor = _spouse_factor(scenario, year)
    return taxes.IncomeSources(
        base=(spouse.base_income + spouse.cpp_income) * factor + cpp_shift,
        rrif=spouse.pension_income * factor,
        oas=spouse.oas_income * factor,
    )


def run_single_simulation(
    scenario: "Scenario",
    monte_carlo: bool = False,
    run_index: int = 0,
    base_seed: Optional[int] = None,
) -> SimulationResult:
    """Simulate ``scenario`` from its start year to its end year.

    Parameters
    ----------
    scenario : Scenario
        Validated, read-only input.  Account state is copied before the loop.
    monte_carlo : bool
        Draw returns from the seeded Student-t generator instead of using
        expected growth.
    run_index : int
        Offset added to the base seed in Monte Carlo mode.
    base_seed : int, optional
        Overrides ``scenario.monte_carlo.base_seed``.

    Returns
    -------
    SimulationResult
        ``SUCCESS`` when funds last through the end year, ``DEPLETED`` with the
        first year that could not be funded, or ``NO_INITIAL_FUNDS`` with no
        records when the scenario starts with nothing.
    """
    if scenario.total_initial_assets <= 0:
        logger.info("scenario %r has no initial funds", scenario.name)
        return SimulationResult(SimulationStatus.NO_INITIAL_FUNDS, [], scenario.start_year)

    generator = None
    if monte_carlo:
        seed = scenario.monte_carlo.base_seed if base_seed is None else base_seed
        generator = ReturnGenerator.for_run(seed, run_index)

    accounts: Dict[str, AccountState] = {
        kind: AccountState.from_config(kind, scenario.accounts[kind]) for kind in ACCOUNT_KINDS
    }
    locked = scenario.locked_in
    chequing = scenario.chequing
    tfsa_room = scenario.tfsa_room
    prior_tax_bill = 0.0
    prior_tfsa_withdrawal = 0.0
    records: List[YearlyRecord] = []
    logger.debug("run %d of %r starting (monte_carlo=%s)", run_index, scenario.name, monte_carlo)

    for year in range(scenario.start_year, scenario.end_year + 1):
        age = scenario.age_in(year)
        decision_log: List[Dict[str, object]] = []

        # 1. LIRA conversion and this year's cash flows
        if age >= locked.conversion_age and accounts["lira"].total > 0:
            unlocked = transfer(accounts["lira"], accounts["rrsp"], locked.unlocking_share)
            to_lif = transfer(accounts["lira"], accounts["lif"], 1.0)
            logger.debug("%d: LIRA converted, %.0f unlocked to RRSP and %.0f to LIF", year, unlocked, to_lif)
            decision_log.append({"reason": f"LIRA converted: {unlocked:.2f} unlocked to RRSP, {to_lif:.2f} to LIF."})
        oas_income = sum(i.amount_for(year) for i in scenario.incomes if i.type.upper() == OAS_INCOME_TYPE)
        client_cpp = sum(i.amount_for(year) for i in scenario.incomes if i.type.upper() == CPP_INCOME_TYPE)
        income = sum(i.amount_for(year) for i in scenario.incomes)
        expenses = sum(e.amount_for(year) for e in scenario.expenses)
        events = [e for e in scenario.one_time_events if e.year == year]
        one_time_income = sum(e.amount for e in events if e.is_income)
        one_time_expense = sum(e.amount for e in events if not e.is_income)
        taxable_one_time = sum(e.amount for e in events if e.is_income and e.taxation_type == "taxable_income")
        one_time_gain = sum(e.amount - e.acb for e in events if e.is_income and e.taxation_type == "capital_gain")

        cpp_shift = _cpp_shift(scenario, year, client_cpp)
        other_income = income - oas_income - cpp_shift
        spouse_sources = _spouse_sources(scenario, year, cpp_shift)
        spouse_age = year - scenario.spouse.birth_year if spouse_sources is not None else None
        rrif_age = age
        if spouse_age is not None and scenario.spouse.use_spouse_age_for_rrif:
            rrif_age = min(age, spouse_age)

        # 2. solvency
        start = Balances.from_accounts(accounts, chequing)
        rrif_minimum = rrif.minimum_withdrawal(start.rrsp, rrif_age)
        lif_minimum = rrif.minimum_withdrawal(start.lif, rrif_age, "lif")
        lif_maximum = max(lif_minimum, rrif.lif_maximum_withdrawal(start.lif, rrif_age, locked.cansim_rate))
        spendable = start.total - start.lira - (start.lif - lif_maximum)
        outflows = expenses + one_time_expense + prior_tax_bill
        if spendable + income + one_time_income < outflows:
            logger.info("run %d depleted in %d", run_index, year)
            return SimulationResult(SimulationStatus.DEPLETED, records, year)

        # 3. TFSA room
        tfsa_room += prior_tfsa_withdrawal + tfsa_annual_limit(year, scenario.tax_inflation_rate)

        # 4. LIF minimum and required withdrawal
        withdrawn = {kind: 0.0 for kind in ACCOUNT_KINDS}
        withdrawn["lif"] = withdraw(accounts["lif"], lif_minimum).amount
        shortfall = (
            outflows - income - one_time_income - withdrawn["lif"] - max(0.0, chequing - scenario.chequing_min)
        )
        required = max(shortfall, rrif_minimum, 0.0)

        # 5. allocate and sell
        params = taxes.get_tax_parameters(year, scenario.tax_inflation_rate, scenario.province)
        realized_gains = one_time_gain
        estimated_tax = 0.0
        if required > 0:
            context = WithdrawalContext(
                scenario=scenario,
                year=year,
                age=age,
                params=params,
                other_income=other_income + taxable_one_time,
                oas_income=oas_income,
                rrif_minimum=rrif_minimum,
                spouse_income=spouse_sources,
                spouse_age=spouse_age,
                locked_in_income=withdrawn["lif"],
                rrif_age=rrif_age,
            )
            plan = find_optimal_withdrawals(required, start, context)
            decision_log.extend(plan.decision_log)
            estimated_tax = plan.estimated_tax
            for kind in _PLANNED_KINDS:
                outcome = withdraw(accounts[kind], plan.withdrawals.get(kind, 0.0))
                withdrawn[kind] = outcome.amount
                realized_gains += outcome.realized_gain
            unfunded = sum(float(entry.get("unfunded", 0.0)) for entry in plan.decision_log)
            extra = min(unfunded, lif_maximum - withdrawn["lif"])
            if extra > 0:
                withdrawn["lif"] += withdraw(accounts["lif"], extra).amount
                decision_log.append({"reason": f"Drew {extra:.2f} more from the LIF, up to its maximum."})
        else:
            decision_log.append({"reason": "No withdrawal needed.", "solver_feasible": True})
        prior_tfsa_withdrawal = withdrawn["tfsa"]

        # 6. chequing
        chequing += sum(withdrawn.values()) + income + one_time_income - outflows
        if chequing < 0:
            logger.warning("chequing fell to %.2f in %d; floored at zero", chequing, year)
            decision_log.append({"reason": f"Chequing shortfall of {-chequing:.2f} floored at zero."})
            chequing = 0.0

        # 7. growth
        market = MarketState.for_year(year, scenario, generator)
        growth = {kind: grow(accounts[kind], market.rates, scenario.asset_profiles) for kind in ACCOUNT_KINDS}

        # 8. rebalance
        for kind in ACCOUNT_KINDS:
            target = target_composition(scenario, year, kind)
            realized_gains += rebalance(accounts[kind], target, scenario.rebalance_threshold)

        # 9. tax on this year's income, due next year
        taxable_growth = growth["non_reg"]
        client = taxes.IncomeSources(
            base=other_income + taxable_one_time,
            rrif=withdrawn["rrsp"] + withdrawn["lif"],
            capital_gains=max(0.0, realized_gains) * params.inclusion_rate,
            canadian_dividend=taxable_growth.canadian_dividends,
            foreign_dividend=taxable_growth.foreign_income,
            oas=oas_income,
        )
        tax = taxes.optimize_joint_tax(client, spouse_sources, age, params, scenario.province, spouse_age=spouse_age)
        tax_owed = tax.household_bill
        if cpp_shift:
            # the spouse's own bill is measured without the shared CPP
            unshared = taxes.optimize_joint_tax(
                _spouse_sources(scenario, year), None, spouse_age, params, scenario.province
            )
            tax_owed += tax.spouse_baseline_tax - unshared.total_tax
        tax_detail = dict(tax.details)
        tax_detail.update({
            "estimated_tax": estimated_tax,
            "split_amount": tax.split_amount,
            "spouse_tax": tax.spouse_tax,
            "cpp_shared": cpp_shift,
        })

        # 10. dividends and surplus sweep
        chequing += taxable_growth.dividends
        to_tfsa = to_non_reg = 0.0
        sweep_above = scenario.chequing_max + tax_owed
        if chequing > sweep_above:
            surplus = chequing - sweep_above
            to_tfsa, to_non_reg = contribute_surplus(
                surplus, accounts["tfsa"], accounts["non_reg"], tfsa_room, target_composition(scenario, year)
            )
            chequing -= surplus
            tfsa_room -= to_tfsa

        # 11. record
        end = Balances.from_accounts(accounts, chequing)
        records.append(YearlyRecord(
            year=year,
            age=age,
            start_balances=start,
            end_balances=end,
            start_total=start.total,
            end_total=end.total,
            income=income,
            expenses=expenses,
            one_time_income=one_time_income,
            one_time_expense=one_time_expense,
            tax_paid=prior_tax_bill,
            tax_owed=tax_owed,
            oas_clawback=tax.oas_clawback,
            marginal_rate=tax.marginal_rate,
            split_ratio=tax.split_ratio,
            rrif_minimum=rrif_minimum,
            withdrawals=withdrawn,
            lif_minimum=lif_minimum,
            dividend_income=sum(g.dividends + g.reinvested for g in growth.values()),
            realized_capital_gains=realized_gains,
            tfsa_contribution=to_tfsa,
            non_reg_contribution=to_non_reg,
            tfsa_room=tfsa_room,
            tax_detail=tax_detail,
            decision_log=decision_log,
        ))
        logger.debug(
            "%d age %d: withdrew %s, tax owed %.0f, end total %.0f",
            year, age, {k: round(v) for k, v in withdrawn.items()}, tax_owed, end.total,
        )
        prior_tax_bill = tax_owed

    logger.debug("run %d of %r completed", run_index, scenario.name)
    return SimulationResult(SimulationStatus.SUCCESS, records, None)


__all__ = [
    "SimulationStatus",
    "YearlyRecord",
    "SimulationResult",
    "tfsa_annual_limit",
    "run_single_simulation",
]
