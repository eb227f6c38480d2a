"""Helper package that exposes the drawdown engine.

The `calculators` package contains small, focused modules that each implement
one piece of the drawdown model:

* ``taxes`` – federal and provincial income tax, OAS clawback and pension splitting.
* ``rrif`` – mandatory RRIF minimum withdrawal factors.
* ``returns`` – seeded Student-t return generator and market crash schedule.
* ``accounts`` – holdings and ACB bookkeeping: withdraw, grow, rebalance, contribute.
* ``strategy`` – iterative linear-programming withdrawal allocator.
* ``simulation`` – the annual state-transition loop for one run.
* ``monte_carlo`` – batches of independently seeded runs and their aggregates.

Each module exposes a few public functions with clear parameters and returns.  See
individual docstrings for details.
"""

from . import taxes, rrif, returns, accounts, strategy, simulation, monte_carlo  # noqa: F401

__all__ = ["taxes", "rrif", "returns", "accounts", "strategy", "simulation", "monte_carlo"]
