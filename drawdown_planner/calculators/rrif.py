"""Registered Retirement Income Fund (RRIF) and Life Income Fund (LIF) limits.

An RRSP must be converted to a RRIF by the end of the year the holder turns
71, after which a prescribed percentage of the January 1 balance has to be
withdrawn every year.  The percentages below are the published factors for
ages 71 through 94; from age 95 onwards the factor is a flat 20%.

A LIF (the payout form of a locked-in LIRA) follows the same table from 71.
Between 55 and 70 its minimum is ``1 / (90 - age)`` of the opening balance.
A LIF also has an annual maximum, the payment that would exhaust the balance
by age 90 at the greater of 6% and the CANSIM long-term bond rate.

Example
-------

>>> # Minimum for a 71-year-old with $500k in a RRIF at the start of the year
>>> round(minimum_withdrawal(balance=500000, age=71), 2)
26400.0

>>> minimum_withdrawal(balance=500000, age=70)
0.0

>>> round(minimum_withdrawal(balance=100000, age=60, account_type="lif"), 2)
3333.33
"""

from __future__ import annotations

from typing import Dict

RRIF_START_AGE = 71
RRIF_MAX_RATE = 0.20
RRIF_MAX_RATE_AGE = 95

LIF_START_AGE = 55
LIF_TERMINAL_AGE = 90
LIF_MIN_MAXIMUM_INTEREST = 0.06

ACCOUNT_TYPES = ("rrsp", "lif")


def _rrif_minimum_table() -> Dict[int, float]:
    """Return the prescribed RRIF minimum withdrawal factors by age.

    Returns
    -------
    dict
        Mapping from age to the fraction of the opening balance that must be
        withdrawn.
    """
    return {
        71: 0.0528,
        72: 0.0540,
        73: 0.0553,
        74: 0.0567,
        75: 0.0582,
        76: 0.0598,
        77: 0.0617,
        78: 0.0636,
        79: 0.0658,
        80: 0.0682,
        81: 0.0708,
        82: 0.0738,
        83: 0.0771,
        84: 0.0808,
        85: 0.0851,
        86: 0.0899,
        87: 0.0955,
        88: 0.1021,
        89: 0.1099,
        90: 0.1192,
        91: 0.1306,
        92: 0.1449,
        93: 0.1634,
        94: 0.1879,
        95: 0.2000,
    }


def minimum_rate(age: int, account_type: str = "rrsp") -> float:
    """Fraction of the opening balance that must come out at ``age``.

    ``account_type`` is ``"rrsp"`` (RRIF rules) or ``"lif"``.
    """
    if account_type not in ACCOUNT_TYPES:
        raise ValueError(f"Unknown account type: {account_type!r}")
    if account_type == "lif" and LIF_START_AGE <= age < RRIF_START_AGE:
        return 1.0 / max(1, LIF_TERMINAL_AGE - age)
    if age < RRIF_START_AGE:
        return 0.0
    if age >= RRIF_MAX_RATE_AGE:
        return RRIF_MAX_RATE
    return _rrif_minimum_table()[age]


def minimum_withdrawal(balance: float, age: int, account_type: str = "rrsp") -> float:
    """Compute the mandatory withdrawal for a given age and balance.

    Parameters
    ----------
    balance : float
        RRIF or LIF balance at the start of the year.
    age : int
        Age used for the minimum during the year.
    account_type : str
        ``"rrsp"`` for the RRIF schedule, ``"lif"`` for the LIF schedule.

    Returns
    -------
    float
        The minimum withdrawal.  Zero before the schedule starts or for a
        non-positive balance.
    """
    if balance <= 0:
        return 0.0
    return balance * minimum_rate(age, account_type)


def lif_maximum_rate(age: int, cansim_rate: float) -> float:
    """Largest fraction of the opening LIF balance that may be paid out at ``age``."""
    if age < LIF_START_AGE:
        return 0.0
    years = LIF_TERMINAL_AGE - age
    if years <= 0:
        return 1.0
    r = max(cansim_rate, LIF_MIN_MAXIMUM_INTEREST)
    annuity = r / (1.0 - (1.0 + r) ** -years)
    return min(1.0, max(annuity, minimum_rate(age, "lif")))


def lif_maximum_withdrawal(balance: float, age: int, cansim_rate: float) -> float:
    if balance <= 0:
        return 0.0
    return balance * lif_maximum_rate(age, cansim_rate)


__all__ = [
    "RRIF_START_AGE",
    "LIF_START_AGE",
    "minimum_rate",
    "minimum_withdrawal",
    "lif_maximum_rate",
    "lif_maximum_withdrawal",
]
