# app.py
import json
import logging
from pathlib import Path

import streamlit as st

from drawdown_planner.calculators import monte_carlo, simulation
from drawdown_planner.components.charts import (
    fan_chart,
    account_area_chart,
    success_gauge,
    tax_chart,
    withdrawals_chart,
)
from drawdown_planner.scenario import Scenario, ScenarioError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

SAMPLE_PATH = Path(__file__).resolve().parent / "drawdown_planner" / "data" / "sample_scenario.json"

# ---------- Page config ----------
st.set_page_config(
    page_title="Drawdown Planner",
    layout="wide",
    initial_sidebar_state="auto",
)

st.session_state.setdefault("raw_scenario", None)
st.session_state.setdefault("run_now", False)


# ---------- Scenario input ----------
st.sidebar.header("Scenario")
uploaded = st.sidebar.file_uploader("Upload scenario JSON", type="json")
if uploaded is not None:
    try:
        st.session_state["raw_scenario"] = json.load(uploaded)
        st.sidebar.success("Scenario loaded from file.")
    except json.JSONDecodeError:
        st.sidebar.error("Invalid JSON file.")
if st.session_state["raw_scenario"] is None:
    with open(SAMPLE_PATH, "r", encoding="utf-8") as f:
        st.session_state["raw_scenario"] = json.load(f)

try:
    scenario = Scenario.from_dict(st.session_state["raw_scenario"])
except ScenarioError as exc:
    st.error("The scenario is not valid:")
    for problem in exc.errors:
        st.markdown(f"- {problem}")
    st.stop()

st.sidebar.caption(f"**{scenario.name}** · {scenario.province} · {scenario.start_year}–{scenario.end_year}")
mode = st.sidebar.radio("Mode", ["Deterministic", "Monte Carlo"])
runs = st.sidebar.number_input("Runs", min_value=1, max_value=10000, value=scenario.monte_carlo.runs, step=50)
seed = st.sidebar.number_input("Base seed", min_value=0, value=scenario.monte_carlo.base_seed, step=1)
workers = st.sidebar.number_input("Worker processes", min_value=1, max_value=16, value=1, step=1)

st.header("Run Simulation")
if st.button("Run", type="primary"):
    st.session_state["run_now"] = True

if not st.session_state["run_now"]:
    st.info("Run a simulation to see results.")
    st.stop()


# ====== RUN SIMULATION ======
result = simulation.run_single_simulation(scenario)
frame = result.to_frame()

if mode == "Monte Carlo":
    bar = st.progress(0.0)

    def _progress(done: int, total: int) -> None:
        bar.progress(done / total, text=f"{done:,} / {total:,} runs")

    with st.spinner(f"Running {int(runs):,} Monte Carlo paths..."):
        try:
            batch = monte_carlo.simulate(
                scenario, runs=int(runs), base_seed=int(seed), progress=_progress, workers=int(workers)
            )
        except monte_carlo.MonteCarloError as exc:
            st.error(str(exc))
            st.stop()

    st.subheader("Plan Summary")
    kcol1, kcol2 = st.columns(2)
    with kcol1:
        st.plotly_chart(success_gauge(batch.success_probability), use_container_width=True)
    with kcol2:
        finals = sorted(batch.final_balances)
        median_final = finals[len(finals) // 2] if finals else 0.0
        st.metric(label="Median final balance", value=f"${median_final:,.0f}")
        st.metric(label="Simulation size", value=f"{batch.total_runs:,} runs")
        if batch.depletion_years:
            st.caption(f"Earliest depletion: {min(batch.depletion_years)}")
    st.plotly_chart(fan_chart(batch.years, batch.percentiles()), use_container_width=True)
    st.divider()

# --- Deterministic path ---
st.subheader("Expected-Return Path")
if result.status is simulation.SimulationStatus.NO_INITIAL_FUNDS:
    st.warning("The scenario starts with no funds.")
    st.stop()
if result.status is simulation.SimulationStatus.DEPLETED:
    st.warning(f"Funds run out in {result.depletion_year}.")
else:
    st.success(f"Funds last through {scenario.end_year}; final balance ${result.final_balance:,.0f}.")

c1, c2 = st.columns(2)
with c1:
    st.plotly_chart(account_area_chart(frame), use_container_width=True)
with c2:
    st.plotly_chart(withdrawals_chart(frame), use_container_width=True)
st.plotly_chart(tax_chart(frame), use_container_width=True)

st.markdown("### Yearly Ledger")
st.dataframe(frame, use_container_width=True, height=350)
st.download_button(
    "⬇️ CSV (yearly ledger)",
    data=frame.to_csv().encode("utf-8"),
    file_name="yearly_ledger.csv",
    mime="text/csv",
)
