"""Tests for the annual simulation loop."""

import pytest

from drawdown_planner.calculators import rrif, simulation
from drawdown_planner.calculators.simulation import SimulationStatus
from drawdown_planner.scenario import Scenario, load_scenario


def test_no_initial_funds(scenario_dict):
    scenario_dict["accounts"] = {}
    scenario_dict["chequing"] = 0
    res = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    assert res.status is SimulationStatus.NO_INITIAL_FUNDS
    assert res.yearly_data == []


def test_funded_scenario_has_records(scenario_dict):
    scenario = Scenario.from_dict(scenario_dict)
    res = simulation.run_single_simulation(scenario)
    assert res.status is not SimulationStatus.NO_INITIAL_FUNDS
    assert res.yearly_data[0].year == scenario.start_year


def test_success_covers_every_year(scenario_dict):
    scenario = Scenario.from_dict(scenario_dict)
    res = simulation.run_single_simulation(scenario)
    assert res.status is SimulationStatus.SUCCESS
    assert res.depletion_year is None
    assert [r.year for r in res.yearly_data] == list(range(2025, 2046))
    assert [r.age for r in res.yearly_data][:2] == [65, 66]


def test_withdrawals_respect_minimum_and_balances(sample_path):
    res = simulation.run_single_simulation(load_scenario(sample_path))
    assert res.yearly_data
    for r in res.yearly_data:
        assert r.total_withdrawal >= r.rrif_minimum - 1e-6
        assert r.withdrawals["rrsp"] >= r.rrif_minimum - 1e-6
        for kind, amount in r.withdrawals.items():
            assert 0.0 <= amount <= r.start_balances.get(kind) + 1e-6
        assert r.end_balances.chequing >= 0.0


def test_rrif_minimum_starts_at_71(sample_path):
    scenario = load_scenario(sample_path)
    res = simulation.run_single_simulation(scenario)
    by_age = {r.age: r for r in res.yearly_data}
    assert by_age[70].rrif_minimum == 0.0
    assert by_age[71].rrif_minimum == pytest.approx(by_age[71].start_balances.rrsp * 0.0528)


def test_tax_bill_lags_one_year(scenario_dict):
    res = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    records = res.yearly_data
    assert records[0].tax_paid == 0.0
    for prev, cur in zip(records, records[1:]):
        assert cur.tax_paid == prev.tax_owed


def test_deterministic_runs_are_identical(sample_path):
    scenario = load_scenario(sample_path)
    first = simulation.run_single_simulation(scenario)
    second = simulation.run_single_simulation(scenario)
    assert first.yearly_data == second.yearly_data


def test_monte_carlo_run_is_reproducible(sample_path):
    scenario = load_scenario(sample_path)
    a = simulation.run_single_simulation(scenario, monte_carlo=True, run_index=3)
    b = simulation.run_single_simulation(scenario, monte_carlo=True, run_index=3)
    c = simulation.run_single_simulation(scenario, monte_carlo=True, run_index=4)
    assert a.balance_path() == b.balance_path()
    assert a.balance_path() != c.balance_path()


def test_depletion_stops_without_partial_year(scenario_dict):
    scenario_dict["accounts"] = {"tfsa": {"holdings": {"bond": 100000}}}
    scenario_dict["incomes"] = []
    scenario_dict["expenses"] = [{"type": "Living", "amount": 60000, "start_year": 2025}]
    res = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    assert res.status is SimulationStatus.DEPLETED
    assert res.depletion_year is not None
    assert len(res.yearly_data) == res.depletion_year - 2025
    assert all(r.year < res.depletion_year for r in res.yearly_data)


def test_scenario_is_not_mutated(scenario_dict):
    scenario = Scenario.from_dict(scenario_dict)
    before = dict(scenario.accounts["rrsp"].holdings)
    simulation.run_single_simulation(scenario)
    assert scenario.accounts["rrsp"].holdings == before


def test_one_time_capital_gain_is_taxed(scenario_dict):
    base = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    scenario_dict["one_time_events"] = [{
        "name": "Cottage", "year": 2026, "amount": 200000, "type": "income",
        "taxation_type": "capital_gain", "acb": 100000,
    }]
    with_sale = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    assert with_sale.yearly_data[1].one_time_income == 200000
    assert with_sale.yearly_data[1].realized_capital_gains >= 100000
    assert with_sale.yearly_data[1].tax_owed > base.yearly_data[1].tax_owed


def test_surplus_is_swept_into_tfsa_first(scenario_dict):
    scenario_dict["chequing"] = 200000
    scenario_dict["chequing_max"] = 20000
    res = simulation.run_single_simulation(Scenario.from_dict(scenario_dict))
    first = res.yearly_data[0]
    assert first.tfsa_contribution == pytest.approx(7000.0)
    assert first.non_reg_contribution > 0
    assert first.tfsa_room == pytest.approx(0.0)
    assert first.end_balances.chequing == pytest.approx(20000 + first.tax_owed)


@pytest.mark.parametrize("year,limit", [(2025, 7000), (2026, 7000), (2030, 8000)])
def test_tfsa_annual_limit(year, limit):
    assert simulation.tfsa_annual_limit(year, 0.025) == limit


def test_to_frame(sample_path):
    scenario = load_scenario(sample_path)
    frame = simulation.run_single_simulation(scenario).to_frame()
    assert frame.index[0] == scenario.start_year
    for col in ("withdrawal_rrsp", "withdrawal_tfsa", "withdrawal_non_reg", "tax_owed", "end_chequing"):
        assert col in frame.columns


def test_lira_converts_at_conversion_age(scenario_dict):
    scenario_dict["accounts"]["lira"] = {"holdings": {"bond": 100000}}
    scenario_dict["locked_in"] = {"conversion_age": 66, "unlocking_share": 0.5}
    records = simulation.run_single_simulation(Scenario.from_dict(scenario_dict)).yearly_data
    first, second = records[0], records[1]

    assert first.withdrawals["lira"] == 0.0
    assert first.withdrawals["lif"] == 0.0
    assert first.end_balances.lira > 100000

    assert second.start_balances.lira == 0.0
    assert second.start_balances.lif == pytest.approx(first.end_balances.lira * 0.5)
    assert second.start_balances.rrsp == pytest.approx(first.end_balances.rrsp + first.end_balances.lira * 0.5)
    assert second.lif_minimum == pytest.approx(second.start_balances.lif / 24)
    assert second.withdrawals["lif"] == pytest.approx(second.lif_minimum)
    assert any("LIRA converted" in entry["reason"] for entry in second.decision_log)


def _lif_only(scenario_dict, expenses):
    scenario_dict["accounts"] = {"lif": {"holdings": {"bond": 200000}}}
    scenario_dict["chequing"] = 0
    scenario_dict["chequing_min"] = 0
    scenario_dict["incomes"] = []
    scenario_dict["expenses"] = [{"type": "Living", "amount": expenses, "start_year": 2025}]
    return Scenario.from_dict(scenario_dict)


def test_lif_covers_gap_up_to_its_maximum(scenario_dict):
    res = simulation.run_single_simulation(_lif_only(scenario_dict, 12000))
    first = res.yearly_data[0]
    assert first.lif_minimum == pytest.approx(8000.0)
    assert first.withdrawals["lif"] == pytest.approx(12000.0, abs=1.0)
    assert first.withdrawals["lif"] <= rrif.lif_maximum_withdrawal(200000, 65, 0.035) + 1e-6


def test_locked_in_funds_above_lif_maximum_are_not_spendable(scenario_dict):
    res = simulation.run_single_simulation(_lif_only(scenario_dict, 50000))
    assert res.status is SimulationStatus.DEPLETED
    assert res.depletion_year == 2025
    assert res.yearly_data == []


def _cpp_couple(scenario_dict, sharing):
    scenario_dict["incomes"] = [
        {"type": "Pension", "amount": 90000, "start_year": 2025},
        {"type": "CPP", "amount": 15000, "start_year": 2025},
    ]
    scenario_dict["expenses"] = [{"type": "Living", "amount": 30000, "start_year": 2025}]
    scenario_dict["spouse"] = {"enabled": True, "birth_year": 1962, "optimize_cpp_sharing": sharing}
    return simulation.run_single_simulation(Scenario.from_dict(scenario_dict)).yearly_data[0]


def test_cpp_sharing_lowers_household_tax(scenario_dict):
    unshared = _cpp_couple(dict(scenario_dict), sharing=False)
    shared = _cpp_couple(dict(scenario_dict), sharing=True)
    assert unshared.tax_detail["cpp_shared"] == 0.0
    assert shared.tax_detail["cpp_shared"] == pytest.approx(7500.0)
    assert shared.tax_owed < unshared.tax_owed
    assert shared.total_withdrawal == unshared.total_withdrawal == 0.0


def _older_client(scenario_dict, use_spouse_age):
    scenario_dict["birth_year"] = 1950
    scenario_dict["end_year"] = 2030
    scenario_dict["spouse"] = {"enabled": True, "birth_year": 1954, "use_spouse_age_for_rrif": use_spouse_age}
    return simulation.run_single_simulation(Scenario.from_dict(scenario_dict)).yearly_data[0]


def test_rrif_minimum_uses_younger_spouse_age(scenario_dict):
    own_age = _older_client(dict(scenario_dict), use_spouse_age=False)
    spouse_age = _older_client(dict(scenario_dict), use_spouse_age=True)
    assert own_age.age == spouse_age.age == 75
    assert own_age.rrif_minimum == pytest.approx(own_age.start_balances.rrsp * 0.0582)
    assert spouse_age.rrif_minimum == pytest.approx(spouse_age.start_balances.rrsp * 0.0528)
    assert spouse_age.rrif_minimum < own_age.rrif_minimum
