"""Tests for scenario parsing and validation."""

import json

import pytest

from drawdown_planner.scenario import RecurringItem, Scenario, ScenarioError, load_scenario


def test_sample_scenario_loads(sample_path):
    scenario = load_scenario(sample_path)
    assert scenario.province == "ON"
    assert scenario.spouse.enabled
    assert scenario.accounts["non_reg"].acb["growth"] == 70000
    assert scenario.total_initial_assets == pytest.approx(770000)
    assert scenario.one_time_events[1].taxation_type == "capital_gain"


def test_defaults_for_optional_sections(scenario_dict):
    scenario = Scenario.from_dict(scenario_dict)
    assert "growth" in scenario.asset_profiles
    assert scenario.asset_profiles["dividend_can"].canadian_dividend
    assert scenario.monte_carlo.risk_profile == "balanced"
    assert not scenario.expert_mode.enabled
    assert scenario.expert_mode.look_ahead_years == 7
    assert not scenario.spouse.enabled
    assert scenario.expenses[0].end_year == scenario.end_year


def test_locked_in_defaults(scenario_dict):
    locked = Scenario.from_dict(scenario_dict).locked_in
    assert locked.conversion_age == 71
    assert locked.unlocking_share == 0.5
    assert locked.cansim_rate == 0.035


def test_acb_ratio_seeds_every_holding(scenario_dict):
    scenario_dict["accounts"]["non_reg"] = {"holdings": {"growth": 1000, "bond": 500}, "acb_ratio": 0.8}
    acct = Scenario.from_dict(scenario_dict).accounts["non_reg"]
    assert acct.acb == pytest.approx({"growth": 800, "bond": 400})
    assert acct.acb_ratio == 0.8


def test_explicit_acb_wins_over_ratio(scenario_dict):
    scenario_dict["accounts"]["non_reg"]["acb_ratio"] = 0.1
    acct = Scenario.from_dict(scenario_dict).accounts["non_reg"]
    assert acct.acb == {"growth": 100000}


def test_spouse_flags_parsed(scenario_dict):
    scenario_dict["spouse"] = {
        "enabled": True,
        "birth_year": 1963,
        "optimize_cpp_sharing": True,
        "use_spouse_age_for_rrif": True,
    }
    spouse = Scenario.from_dict(scenario_dict).spouse
    assert spouse.optimize_cpp_sharing
    assert spouse.use_spouse_age_for_rrif
    assert not Scenario.from_dict(dict(scenario_dict, spouse={"enabled": False})).spouse.optimize_cpp_sharing


def test_province_is_upper_cased(scenario_dict):
    scenario_dict["province"] = "bc"
    assert Scenario.from_dict(scenario_dict).province == "BC"


def test_recurring_item_compounds_from_own_start():
    item = RecurringItem("Living", 1000.0, start_year=2030, end_year=2040, growth_rate=0.1)
    assert item.amount_for(2029) == 0.0
    assert item.amount_for(2030) == 1000.0
    assert item.amount_for(2032) == pytest.approx(1210.0)
    assert item.amount_for(2041) == 0.0


def _break_end_year(d):
    d["end_year"] = d["start_year"]


def _break_composition(d):
    d["portfolio"] = {"start_composition": {"growth": 0.7, "bond": 0.2}, "end_composition": {"bond": 1.0}}


def _break_balance(d):
    d["accounts"]["tfsa"]["holdings"]["growth"] = -5


def _break_chequing(d):
    d["chequing_max"] = d["chequing_min"]


def _break_item_dates(d):
    d["expenses"][0]["end_year"] = 2020


def _break_item_amount(d):
    d["incomes"][0]["amount"] = -100


def _break_taxation(d):
    d["one_time_events"] = [{"name": "Gift", "year": 2030, "amount": 1000, "type": "income", "taxation_type": "lottery"}]


def _break_event_type(d):
    d["one_time_events"] = [{"name": "Gift", "year": 2030, "amount": 1000, "type": "windfall"}]


def _break_province(d):
    d["province"] = "ZZ"


def _break_risk_profile(d):
    d["monte_carlo"] = {"risk_profile": "yolo"}


def _break_unknown_asset(d):
    d["accounts"]["rrsp"]["holdings"]["crypto"] = 1000


def _break_spouse(d):
    d["spouse"] = {"enabled": True}


def _break_birth_year(d):
    d["birth_year"] = 2030


def _break_unlocking_share(d):
    d["locked_in"] = {"unlocking_share": 1.5}


def _break_cansim_rate(d):
    d["locked_in"] = {"cansim_rate": -0.01}


def _break_conversion_age(d):
    d["locked_in"] = {"conversion_age": 50}


def _break_acb_ratio(d):
    d["accounts"]["non_reg"] = {"holdings": {"growth": 1000}, "acb_ratio": -0.5}


@pytest.mark.parametrize(
    "breaker,fragment",
    [
        (_break_end_year, "end_year must be after start_year"),
        (_break_composition, "must add up to 1.0"),
        (_break_balance, "cannot be negative"),
        (_break_chequing, "chequing_max"),
        (_break_item_dates, "end_year cannot be before start_year"),
        (_break_item_amount, "amount cannot be negative"),
        (_break_taxation, "taxation_type"),
        (_break_event_type, "unknown type"),
        (_break_province, "province"),
        (_break_risk_profile, "risk_profile"),
        (_break_unknown_asset, "no asset profile"),
        (_break_spouse, "spouse.birth_year"),
        (_break_birth_year, "start_year must be after birth_year"),
        (_break_unlocking_share, "unlocking_share must be between 0 and 1"),
        (_break_cansim_rate, "cansim_rate cannot be negative"),
        (_break_conversion_age, "conversion_age must be between 55 and 71"),
        (_break_acb_ratio, "acb_ratio cannot be negative"),
    ],
)
def test_invalid_scenarios_rejected(scenario_dict, breaker, fragment):
    breaker(scenario_dict)
    with pytest.raises(ScenarioError) as excinfo:
        Scenario.from_dict(scenario_dict)
    assert fragment in str(excinfo.value)


def test_all_problems_reported_together(scenario_dict):
    _break_province(scenario_dict)
    _break_chequing(scenario_dict)
    with pytest.raises(ScenarioError) as excinfo:
        Scenario.from_dict(scenario_dict)
    assert len(excinfo.value.errors) == 2


@pytest.mark.parametrize("field", ["birth_year", "start_year", "end_year"])
def test_missing_required_field(scenario_dict, field):
    del scenario_dict[field]
    with pytest.raises(ScenarioError, match=field):
        Scenario.from_dict(scenario_dict)


def test_wrong_shape_rejected(scenario_dict):
    scenario_dict["expenses"] = {"Living": 50000}
    with pytest.raises(ScenarioError, match="expected array"):
        Scenario.from_dict(scenario_dict)


def test_skip_validation(scenario_dict):
    _break_province(scenario_dict)
    scenario = Scenario.from_dict(scenario_dict, validate=False)
    assert scenario.validation_errors()


def test_scenario_error_is_value_error():
    assert issubclass(ScenarioError, ValueError)


def test_load_scenario_bad_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ScenarioError, match="invalid JSON"):
        load_scenario(path)


def test_load_scenario_round_trip(tmp_path, scenario_dict):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(scenario_dict), encoding="utf-8")
    assert load_scenario(path) == Scenario.from_dict(scenario_dict)
