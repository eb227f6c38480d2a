"""Shared scenario fixtures."""

import copy
from pathlib import Path

import pytest

SAMPLE_PATH = Path(__file__).resolve().parent.parent / "drawdown_planner" / "data" / "sample_scenario.json"

BASE_SCENARIO = {
    "name": "Test retiree",
    "province": "ON",
    "birth_year": 1960,
    "start_year": 2025,
    "end_year": 2045,
    "accounts": {
        "rrsp": {"holdings": {"growth": 300000, "bond": 200000}},
        "tfsa": {"holdings": {"growth": 60000, "bond": 40000}},
        "non_reg": {"holdings": {"growth": 150000}, "acb": {"growth": 100000}},
    },
    "chequing": 10000,
    "chequing_min": 5000,
    "chequing_max": 30000,
    "incomes": [
        {"type": "CPP", "amount": 12000, "start_year": 2025, "growth_rate": 0.025},
        {"type": "OAS", "amount": 8800, "start_year": 2025, "growth_rate": 0.025},
    ],
    "expenses": [
        {"type": "Living", "amount": 50000, "start_year": 2025, "growth_rate": 0.025},
    ],
}


@pytest.fixture
def scenario_dict():
    return copy.deepcopy(BASE_SCENARIO)


@pytest.fixture
def sample_path():
    return SAMPLE_PATH
