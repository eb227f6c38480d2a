"""Year-by-year Canadian retirement drawdown planner.

Calculators live in :mod:`drawdown_planner.calculators`; the scenario schema in
:mod:`drawdown_planner.scenario`; plotly chart helpers in
:mod:`drawdown_planner.components`.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
