"""Canadian income tax calculations.

This module implements simplified federal and provincial personal income tax
for a retiree.  The base-year (2025) tables live in ``data/tax_tables.json``;
every later year is derived from them by compounding the tax-indexation rate,
so the shipped tables are never modified.  The calculation covers progressive
brackets, the basic personal amount, the income-tested age amount, the pension
income amount, the eligible dividend gross-up and credit, Ontario and PEI
provincial surtax, the Nova Scotia health surtax, the Quebec federal
abatement and the Old Age Security recovery tax ("clawback").  Pension
income splitting between spouses is searched over a coarse grid of ratios.

Example
-------

>>> calculate_bracket_tax(60000, (50000, float("inf")), (0.10, 0.20)).total
7000.0

>>> params = get_tax_parameters(2025, 0.025, "ON")
>>> params.federal_rates[0]
0.145
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_DEFAULT_TAX_TABLE_PATH = Path(__file__).resolve().parent.parent / "data" / "tax_tables.json"

# Pension splitting may move at most half of eligible pension income.
SPLIT_RATIOS: Tuple[float, ...] = tuple(round(0.05 * i, 2) for i in range(11))
PENSION_CREDIT_AGE = 65


def _load_tax_tables(path: Optional[Path] = None) -> Dict[str, Dict]:
    """Load tax tables from JSON.  If ``path`` is not provided, load the
    default file shipped with the package.

    Parameters
    ----------
    path : Path, optional
        Path to a JSON file containing the tax tables.

    Returns
    -------
    dict
        The parsed tax tables.
    """
    p = path or _DEFAULT_TAX_TABLE_PATH
    with open(p, "r", encoding="utf-8") as f:
        tables = json.load(f)
    return tables


@lru_cache(maxsize=1)
def _base_tables() -> Dict[str, Dict]:
    # Shared, read-only: callers derive new objects and never write back.
    return _load_tax_tables()


def base_year() -> int:
    return int(_base_tables()["base_year"])


def provinces() -> Tuple[str, ...]:
    return tuple(_base_tables()["provinces"])


@dataclass(frozen=True)
class AgeAmount:
    """Age amount credit base.  Without an income threshold it is a flat amount."""

    max_amount: float
    net_income_threshold: Optional[float] = None
    reduction_rate: float = 0.0
    credit_rate: Optional[float] = None

    @property
    def income_tested(self) -> bool:
        return self.net_income_threshold is not None

    def base(self, net_income: float) -> float:
        if not self.income_tested:
            return self.max_amount
        excess = max(0.0, net_income - self.net_income_threshold)
        return max(0.0, self.max_amount - excess * self.reduction_rate)


@dataclass(frozen=True)
class ProvincialRules:
    code: str
    bpa: float
    brackets: Tuple[float, ...]
    rates: Tuple[float, ...]
    surtax: Tuple[Tuple[float, float], ...] = ()
    age_amount: Optional[AgeAmount] = None
    # graduated on taxable income, not on basic tax
    health_brackets: Tuple[float, ...] = ()
    health_rates: Tuple[float, ...] = ()


@dataclass(frozen=True)
class TaxParameters:
    """Tax rules for a single year and province."""

    year: int
    province: str
    federal_bpa: float
    federal_brackets: Tuple[float, ...]
    federal_rates: Tuple[float, ...]
    quebec_abatement: float
    provincial: ProvincialRules
    oas_clawback_threshold: float
    oas_clawback_rate: float
    age_amount: AgeAmount
    pension_amount: float
    pension_credit_rate: float
    gross_up: float
    federal_dividend_credit_rate: float
    provincial_dividend_credit_rate: float
    inclusion_rate: float


@dataclass(frozen=True)
class IncomeBreakdown:
    """Taxable income by source.  ``capital_gains`` is the taxable (included) part."""

    other_income: float = 0.0
    rrsp_withdrawal: float = 0.0
    canadian_dividend: float = 0.0
    capital_gains: float = 0.0


@dataclass(frozen=True)
class IncomeSources:
    """One spouse's income, as consumed by :func:`optimize_joint_tax`.

    ``base`` excludes OAS; ``oas`` is taxed as other income and drives the
    clawback.  ``rrif`` is deferred-account (pension-eligible) income.
    """

    base: float = 0.0
    rrif: float = 0.0
    capital_gains: float = 0.0
    canadian_dividend: float = 0.0
    foreign_dividend: float = 0.0
    oas: float = 0.0


@dataclass
class BracketTaxResult:
    total: float
    breakdown: List[Dict[str, float]] = field(default_factory=list)


@dataclass
class TaxResult:
    total_tax: float
    marginal_rate: float
    breakdown: Dict[str, object]


@dataclass
class ClawbackTaxResult:
    total_tax: float
    oas_clawback: float
    marginal_rate: float
    details: Dict[str, object]


@dataclass
class JointTaxResult:
    """Outcome of the pension-split search.

    ``total_tax`` is the client's own bill at the chosen ratio.  The spouse's
    tax at the chosen ratio and at 0% are both kept so callers can attribute
    the extra tax that splitting shifts onto the spouse.
    """

    total_tax: float
    oas_clawback: float
    marginal_rate: float
    details: Dict[str, object]
    split_ratio: float = 0.0
    split_amount: float = 0.0
    spouse_tax: float = 0.0
    spouse_baseline_tax: float = 0.0

    @property
    def combined_tax(self) -> float:
        return self.total_tax + self.spouse_tax

    @property
    def household_bill(self) -> float:
        return self.total_tax + (self.spouse_tax - self.spouse_baseline_tax)


def _inflate_brackets(brackets: Sequence[Dict], factor: float) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
    limits = tuple(math.inf if b["end"] is None else b["end"] * factor for b in brackets)
    rates = tuple(float(b["rate"]) for b in brackets)
    return limits, rates


def _age_amount(raw: Optional[Dict], factor: float) -> Optional[AgeAmount]:
    if not raw:
        return None
    threshold = raw.get("net_income_threshold")
    return AgeAmount(
        max_amount=raw["max_amount"] * factor,
        net_income_threshold=None if threshold is None else threshold * factor,
        reduction_rate=raw.get("reduction_rate", 0.0),
        credit_rate=raw.get("credit_rate"),
    )


@lru_cache(maxsize=1024)
def get_tax_parameters(year: int, inflation_rate: float, province: str = "ON") -> TaxParameters:
    """Return the tax rules for ``year`` and ``province``.

    Dollar thresholds of the base-year table are indexed by
    ``(1 + inflation_rate) ** (year - base_year)``; years at or before the base
    year use the table as published.  The lowest federal rate is 14% for every
    year after the base year.
    """
    tables = _base_tables()
    code = (province or "ON").upper()
    if code not in tables["provinces"]:
        raise ValueError(f"Unknown province: {province!r}")

    ref_year = int(tables["base_year"])
    factor = (1.0 + inflation_rate) ** max(0, year - ref_year)

    fed = tables["federal"]
    fed_brackets, fed_rates = _inflate_brackets(fed["brackets"], factor)
    if year > ref_year:
        fed_rates = (float(fed["first_rate_after_base_year"]),) + fed_rates[1:]

    prov = tables["provinces"][code]
    prov_brackets, prov_rates = _inflate_brackets(prov["brackets"], factor)
    surtax = tuple((tier["threshold"] * factor, tier["rate"]) for tier in prov.get("surtax", []))
    health_brackets, health_rates = _inflate_brackets(prov.get("health_surtax", []), factor)
    provincial = ProvincialRules(
        code=code,
        bpa=prov["bpa"] * factor,
        brackets=prov_brackets,
        rates=prov_rates,
        surtax=surtax,
        age_amount=_age_amount(prov.get("age_amount"), factor),
        health_brackets=health_brackets,
        health_rates=health_rates,
    )

    general = tables["general"]
    dividend = tables["dividend"]
    return TaxParameters(
        year=year,
        province=code,
        federal_bpa=fed["bpa"] * factor,
        federal_brackets=fed_brackets,
        federal_rates=fed_rates,
        quebec_abatement=fed["quebec_abatement"],
        provincial=provincial,
        oas_clawback_threshold=general["oas_clawback_threshold"] * factor,
        oas_clawback_rate=general["oas_clawback_rate"],
        age_amount=_age_amount(general["age_amount"], factor),
        pension_amount=general["pension_income_amount"]["max_amount"] * factor,
        pension_credit_rate=general["pension_income_amount"]["credit_rate"],
        gross_up=dividend["gross_up"],
        federal_dividend_credit_rate=dividend["federal_credit_rate"],
        provincial_dividend_credit_rate=dividend["provincial_credit_rates"].get(code, 0.0),
        inclusion_rate=general["capital_gains_inclusion_rate"],
    )


def calculate_bracket_tax(income: float, brackets: Sequence[float], rates: Sequence[float]) -> BracketTaxResult:
    """Progressive tax on ``income``.

    ``brackets`` are ascending, upper-inclusive limits with ``inf`` last and
    ``rates`` the matching marginal rates.
    """
    tax = 0.0
    prev_limit = 0.0
    rows: List[Dict[str, float]] = []
    for limit, rate in zip(brackets, rates):
        if income > prev_limit:
            amount = min(income, limit) - prev_limit
            if amount > 0:
                bracket_tax = amount * rate
                tax += bracket_tax
                rows.append({"from": prev_limit, "to": limit, "rate": rate, "taxable_amount": amount, "tax": bracket_tax})
        if income <= limit:
            break
        prev_limit = limit
    return BracketTaxResult(total=tax, breakdown=rows)


def _marginal(income: float, brackets: Sequence[float], rates: Sequence[float]) -> float:
    for limit, rate in zip(brackets, rates):
        if income <= limit:
            return rate
    return rates[-1]


def _federal_tax(income: IncomeBreakdown, taxable_income: float, grossed_dividend: float, age: int, params: TaxParameters) -> Dict[str, object]:
    bracket = calculate_bracket_tax(taxable_income, params.federal_brackets, params.federal_rates)
    bpa_credit = min(taxable_income, params.federal_bpa) * params.federal_rates[0]
    age_credit = 0.0
    pension_credit = 0.0
    if age >= PENSION_CREDIT_AGE:
        age_credit = params.age_amount.base(taxable_income) * params.age_amount.credit_rate
        pension_credit = min(income.rrsp_withdrawal, params.pension_amount) * params.pension_credit_rate
    dividend_credit = grossed_dividend * params.federal_dividend_credit_rate
    total_credits = bpa_credit + age_credit + pension_credit + dividend_credit
    return {
        "taxable_income": taxable_income,
        "tax_before_credits": bracket.total,
        "tax_by_bracket": bracket.breakdown,
        "credits": {
            "bpa": bpa_credit,
            "age": age_credit,
            "pension": pension_credit,
            "dividend": dividend_credit,
            "total": total_credits,
        },
        "quebec_abatement": 0.0,
        "final_tax": max(0.0, bracket.total - total_credits),
    }


def _quebec_tax(taxable_income: float, grossed_dividend: float, age: int, params: TaxParameters) -> Dict[str, object]:
    rules = params.provincial
    bracket = calculate_bracket_tax(taxable_income, rules.brackets, rules.rates)
    bpa_credit = min(taxable_income, rules.bpa) * rules.rates[0]
    age_credit = 0.0
    if age >= PENSION_CREDIT_AGE and rules.age_amount is not None:
        age_credit = rules.age_amount.base(taxable_income) * (rules.age_amount.credit_rate or rules.rates[0])
    dividend_credit = grossed_dividend * params.provincial_dividend_credit_rate
    total_credits = bpa_credit + age_credit + dividend_credit
    return {
        "tax_before_credits": bracket.total,
        "tax_by_bracket": bracket.breakdown,
        "surtax": 0.0,
        "credits": {
            "bpa": bpa_credit,
            "age": age_credit,
            "pension": 0.0,
            "dividend": dividend_credit,
            "total": total_credits,
        },
        "final_tax": max(0.0, bracket.total - total_credits),
    }


def _provincial_tax(income: IncomeBreakdown, taxable_income: float, grossed_dividend: float, age: int, params: TaxParameters) -> Dict[str, object]:
    rules = params.provincial
    bracket = calculate_bracket_tax(taxable_income, rules.brackets, rules.rates)
    bpa_credit = min(taxable_income, rules.bpa) * rules.rates[0]
    age_credit = 0.0
    pension_credit = 0.0
    if age >= PENSION_CREDIT_AGE:
        if rules.age_amount is not None and rules.age_amount.income_tested:
            age_credit = rules.age_amount.base(taxable_income) * rules.rates[0]
        pension_credit = min(income.rrsp_withdrawal, params.pension_amount) * rules.rates[0]
    dividend_credit = grossed_dividend * params.provincial_dividend_credit_rate
    total_credits = bpa_credit + age_credit + pension_credit + dividend_credit
    basic_tax = max(0.0, bracket.total - total_credits)
    surtax = sum(rate * max(0.0, basic_tax - threshold) for threshold, rate in rules.surtax)
    health_surtax = 0.0
    if rules.health_brackets:
        health_surtax = calculate_bracket_tax(taxable_income, rules.health_brackets, rules.health_rates).total
    return {
        "tax_before_credits": bracket.total,
        "tax_by_bracket": bracket.breakdown,
        "basic_tax": basic_tax,
        "surtax": surtax,
        "health_surtax": health_surtax,
        "credits": {
            "bpa": bpa_credit,
            "age": age_credit,
            "pension": pension_credit,
            "dividend": dividend_credit,
            "total": total_credits,
        },
        "final_tax": basic_tax + surtax + health_surtax,
    }


def calculate_tax(income: IncomeBreakdown, age: int, params: TaxParameters, province: Optional[str] = None) -> TaxResult:
    """Compute combined federal and provincial tax for one person.

    Parameters
    ----------
    income : IncomeBreakdown
        Income by source.  Capital gains must already be reduced to the
        taxable (included) portion.
    age : int
        Age in the tax year; credits for age and pension income start at 65.
    params : TaxParameters
        Rules from :func:`get_tax_parameters`.
    province : str, optional
        Province code; defaults to the province the parameters were built for.

    Returns
    -------
    TaxResult
        Total tax, combined marginal rate and a breakdown for reporting.
    """
    code = (province or params.province).upper()
    if code != params.provincial.code:
        raise ValueError(f"Tax parameters are for {params.provincial.code}, not {code}")

    grossed_dividend = income.canadian_dividend * params.gross_up
    taxable_income = (
        income.other_income
        + income.rrsp_withdrawal
        + grossed_dividend
        + income.capital_gains
    )

    federal = _federal_tax(income, taxable_income, grossed_dividend, age, params)
    fed_mtr = _marginal(taxable_income, params.federal_brackets, params.federal_rates)
    rules = params.provincial
    prov_mtr = _marginal(taxable_income, rules.brackets, rules.rates)

    if code == "QC":
        abatement = federal["final_tax"] * params.quebec_abatement
        federal["quebec_abatement"] = abatement
        federal["final_tax"] -= abatement
        fed_mtr *= 1.0 - params.quebec_abatement
        provincial = _quebec_tax(taxable_income, grossed_dividend, age, params)
    else:
        provincial = _provincial_tax(income, taxable_income, grossed_dividend, age, params)
        surtax_factor = 1.0 + sum(rate for threshold, rate in rules.surtax if provincial["basic_tax"] > threshold)
        prov_mtr *= surtax_factor
        if rules.health_brackets:
            prov_mtr += _marginal(taxable_income, rules.health_brackets, rules.health_rates)

    total = federal["final_tax"] + provincial["final_tax"]
    return TaxResult(
        total_tax=total,
        marginal_rate=fed_mtr + prov_mtr,
        breakdown={"federal": federal, "provincial": provincial, "taxable_income": taxable_income},
    )


def calculate_tax_with_clawback(
    income: IncomeBreakdown,
    net_income_for_clawback: float,
    oas_income: float,
    age: int,
    params: TaxParameters,
    province: Optional[str] = None,
) -> ClawbackTaxResult:
    """Tax including the OAS recovery tax.

    The clawback is 15% of net income above the threshold, never more than the
    OAS received.  It is added to other income and the tax recomputed once.
    """
    clawback = 0.0
    if oas_income > 0 and net_income_for_clawback > params.oas_clawback_threshold:
        excess = net_income_for_clawback - params.oas_clawback_threshold
        clawback = min(oas_income, excess * params.oas_clawback_rate)

    final_income = replace(income, other_income=income.other_income + clawback)
    result = calculate_tax(final_income, age, params, province)
    details = dict(result.breakdown)
    details["oas_clawback"] = clawback
    return ClawbackTaxResult(
        total_tax=result.total_tax,
        oas_clawback=clawback,
        marginal_rate=result.marginal_rate,
        details=details,
    )


def _person_tax(sources: IncomeSources, rrif: float, age: int, params: TaxParameters, province: Optional[str]) -> ClawbackTaxResult:
    breakdown = IncomeBreakdown(
        other_income=sources.base + sources.foreign_dividend + sources.oas,
        rrsp_withdrawal=rrif,
        canadian_dividend=sources.canadian_dividend,
        capital_gains=sources.capital_gains,
    )
    net_income = (
        breakdown.other_income
        + breakdown.rrsp_withdrawal
        + breakdown.capital_gains
        + breakdown.canadian_dividend * params.gross_up
    )
    return calculate_tax_with_clawback(breakdown, net_income, sources.oas, age, params, province)


def optimize_joint_tax(
    client: IncomeSources,
    spouse: Optional[IncomeSources],
    age: int,
    params: TaxParameters,
    province: Optional[str] = None,
    spouse_age: Optional[int] = None,
) -> JointTaxResult:
    """Choose the pension-split ratio that minimises the couple's tax.

    Singles skip the search.  Below age 65 only the 0% ratio is evaluated.
    Ratios are tried in ascending order and only a strictly lower combined tax
    replaces the incumbent, so 0% is returned when no split helps.
    """
    if spouse is None:
        res = _person_tax(client, client.rrif, age, params, province)
        return JointTaxResult(
            total_tax=res.total_tax,
            oas_clawback=res.oas_clawback,
            marginal_rate=res.marginal_rate,
            details=res.details,
        )

    spouse_age = age if spouse_age is None else spouse_age
    ratios = SPLIT_RATIOS if age >= PENSION_CREDIT_AGE else (0.0,)
    best: Optional[JointTaxResult] = None
    baseline_spouse_tax = 0.0
    for ratio in ratios:
        split = client.rrif * ratio
        client_res = _person_tax(client, client.rrif - split, age, params, province)
        spouse_res = _person_tax(spouse, spouse.rrif + split, spouse_age, params, province)
        if ratio == 0.0:
            baseline_spouse_tax = spouse_res.total_tax
        combined = client_res.total_tax + spouse_res.total_tax
        if best is None or combined < best.combined_tax:
            best = JointTaxResult(
                total_tax=client_res.total_tax,
                oas_clawback=client_res.oas_clawback,
                marginal_rate=client_res.marginal_rate,
                details=client_res.details,
                split_ratio=ratio,
                split_amount=split,
                spouse_tax=spouse_res.total_tax,
            )
    best.spouse_baseline_tax = baseline_spouse_tax
    logger.debug("pension split %.0f%% -> combined tax %.2f", best.split_ratio * 100, best.combined_tax)
    return best


__all__ = [
    "AgeAmount",
    "ProvincialRules",
    "TaxParameters",
    "IncomeBreakdown",
    "IncomeSources",
    "BracketTaxResult",
    "TaxResult",
    "ClawbackTaxResult",
    "JointTaxResult",
    "SPLIT_RATIOS",
    "base_year",
    "provinces",
    "get_tax_parameters",
    "calculate_bracket_tax",
    "calculate_tax",
    "calculate_tax_with_clawback",
    "optimize_joint_tax",
    "_load_tax_tables",
]
