"""Tests for the iterative LP withdrawal allocator."""

import pytest

from drawdown_planner.calculators import rrif, strategy, taxes
from drawdown_planner.calculators.accounts import Balances
from drawdown_planner.calculators.strategy import WithdrawalContext
from drawdown_planner.scenario import ExpertMode, Scenario


def _scenario(**overrides):
    data = {
        "birth_year": 1955,
        "start_year": 2025,
        "end_year": 2045,
        "accounts": {"rrsp": {"holdings": {"bond": 500000}}},
    }
    data.update(overrides)
    return Scenario.from_dict(data)


def _context(scenario, age=70, year=2025, **kwargs):
    params = taxes.get_tax_parameters(year, scenario.tax_inflation_rate, scenario.province)
    return WithdrawalContext(scenario=scenario, year=year, age=age, params=params, **kwargs)


@pytest.mark.parametrize("profile", ["conservative", "balanced", "aggressive"])
def test_strategic_parameters_from_profile(profile):
    res = strategy.strategic_parameters(75, 1e6, 0.8, profile)
    assert res == strategy.RISK_PROFILE_PARAMETERS[profile]


def test_strategic_parameters_rrsp_heavy_bonus():
    res = strategy.strategic_parameters(65, 1e6, 0.6, "balanced")
    assert res["rrsp_bonus"] == pytest.approx(0.03)
    assert strategy.strategic_parameters(71, 1e6, 0.6, "balanced")["rrsp_bonus"] == pytest.approx(0.02)


def test_strategic_parameters_expert_override():
    expert = ExpertMode(enabled=True, tfsa_withdrawal_penalty=0.5, rrsp_withdrawal_bonus=0.1)
    assert strategy.strategic_parameters(75, 1e6, 0.2, "balanced", expert) == {"rrsp_bonus": 0.1, "tfsa_penalty": 0.5}
    disabled = ExpertMode(enabled=False, tfsa_withdrawal_penalty=0.5)
    assert strategy.strategic_parameters(75, 1e6, 0.2, "balanced", disabled)["tfsa_penalty"] == 0.07


def test_strategic_parameters_unknown_profile():
    with pytest.raises(ValueError):
        strategy.strategic_parameters(70, 1e6, 0.2, "reckless")


def test_look_ahead_flat_income_no_adjustment():
    scenario = _scenario(incomes=[{"type": "CPP", "amount": 20000, "start_year": 2025}])
    assert strategy.look_ahead_adjustment(60, 2025, 0.0, 20000, scenario) == 0.0


def test_look_ahead_large_future_income():
    scenario = _scenario(incomes=[{"type": "Pension", "amount": 40000, "start_year": 2027}])
    assert strategy.look_ahead_adjustment(60, 2025, 0.0, 10000, scenario) == -0.05


def test_look_ahead_moderate_future_income():
    # every projected year has 24,000 against 20,000 today: ratio 1.2
    scenario = _scenario(incomes=[
        {"type": "CPP", "amount": 20000, "start_year": 2025},
        {"type": "Annuity", "amount": 4000, "start_year": 2026},
    ])
    assert strategy.look_ahead_adjustment(60, 2025, 0.0, 20000, scenario) == -0.02


def test_look_ahead_counts_future_rrif_minimum():
    scenario = _scenario()
    assert strategy.look_ahead_adjustment(68, 2025, 500000, 0.0, scenario) == -0.05


def test_allocation_covers_need_and_tax():
    scenario = _scenario()
    balances = Balances(rrsp=200000, tfsa=100000, non_reg=50000, non_reg_acb=40000)
    plan = strategy.find_optimal_withdrawals(30000, balances, _context(scenario, age=66))
    assert plan.total >= 30000 + plan.estimated_tax - 1e-6
    for kind, amount in plan.withdrawals.items():
        assert 0 <= amount <= balances.get(kind)
    assert plan.decision_log


def test_allocation_respects_rrif_minimum():
    scenario = _scenario()
    balances = Balances(rrsp=500000, tfsa=200000, non_reg=0)
    minimum = rrif.minimum_withdrawal(500000, 72)
    plan = strategy.find_optimal_withdrawals(minimum, balances, _context(scenario, age=72, rrif_minimum=minimum))
    assert plan.withdrawals["rrsp"] >= minimum
    assert plan.total >= minimum


def test_infeasible_falls_back_to_greedy():
    scenario = _scenario()
    balances = Balances(rrsp=10000, tfsa=5000, non_reg=2000, non_reg_acb=1000)
    plan = strategy.find_optimal_withdrawals(1e6, balances, _context(scenario))
    assert plan.withdrawals == {"rrsp": 10000, "tfsa": 5000, "non_reg": 2000}
    assert any(entry.get("solver_feasible") is False for entry in plan.decision_log)


def test_allocation_is_deterministic():
    scenario = _scenario()
    balances = Balances(rrsp=300000, tfsa=80000, non_reg=120000, non_reg_acb=60000)
    ctx = _context(scenario, age=68, other_income=15000, oas_income=8000)
    first = strategy.find_optimal_withdrawals(45000, balances, ctx)
    second = strategy.find_optimal_withdrawals(45000, balances, ctx)
    assert first.withdrawals == second.withdrawals
    assert first.estimated_tax == second.estimated_tax


def test_allocation_with_spouse_uses_joint_tax():
    scenario = _scenario()
    balances = Balances(rrsp=600000, tfsa=0, non_reg=0)
    ctx = _context(scenario, age=70, spouse_income=taxes.IncomeSources(), spouse_age=68)
    plan = strategy.find_optimal_withdrawals(60000, balances, ctx)
    assert plan.withdrawals["rrsp"] >= 60000
    assert plan.split_ratio > 0.0


@pytest.mark.parametrize("with_minimum", [False, True])
def test_plan_covers_the_tax_it_reports(with_minimum):
    scenario = _scenario()
    balances = Balances(rrsp=600000)
    minimum = rrif.minimum_withdrawal(600000, 75) if with_minimum else 0.0
    ctx = _context(scenario, age=75, rrif_minimum=minimum)
    plan = strategy.find_optimal_withdrawals(60000, balances, ctx)
    assert plan.total >= 60000 + plan.estimated_tax - 0.01
    own_tax = taxes.optimize_joint_tax(
        taxes.IncomeSources(rrif=plan.withdrawals["rrsp"]), None, 75, ctx.params, "ON"
    )
    assert plan.estimated_tax == pytest.approx(own_tax.total_tax)


def test_shortfall_left_when_accounts_run_out():
    scenario = _scenario()
    balances = Balances(rrsp=40000, tfsa=10000)
    plan = strategy.find_optimal_withdrawals(49000, balances, _context(scenario, age=75))
    assert plan.withdrawals == {"rrsp": 40000, "tfsa": 10000, "non_reg": 0}
    greedy = [e for e in plan.decision_log if "unfunded" in e]
    assert greedy and greedy[-1]["unfunded"] == pytest.approx(49000 + plan.estimated_tax - 50000)


def test_locked_in_income_is_taxed_with_the_plan():
    scenario = _scenario()
    balances = Balances(rrsp=300000, tfsa=100000)
    base = strategy.find_optimal_withdrawals(30000, balances, _context(scenario, age=72))
    with_lif = strategy.find_optimal_withdrawals(30000, balances, _context(scenario, age=72, locked_in_income=25000))
    assert with_lif.estimated_tax > base.estimated_tax
