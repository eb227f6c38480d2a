# components/charts.py
# Plotly chart helpers for simulation output.
# All functions return a Plotly Figure that Streamlit can display with st.plotly_chart(...).

from typing import Dict, List, Sequence

import pandas as pd
import plotly.graph_objects as go

import plotly.io as pio
pio.templates.default = "plotly_white"

ACCOUNT_LABELS = {
    "rrsp": "RRSP/RRIF",
    "tfsa": "TFSA",
    "non_reg": "Non-registered",
    "lira": "LIRA",
    "lif": "LIF",
    "chequing": "Chequing",
}

_LAYOUT = dict(
    template="plotly_white",
    height=380,
    margin=dict(l=10, r=10, t=40, b=10),
    legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
    xaxis_title="Year",
    yaxis_title="Dollars (nominal)",
)


def _fit(series, n):
    arr = list(series)
    if len(arr) < n: arr += [0.0] * (n - len(arr))
    return arr[:n]


# ---------- Monte Carlo "fan" ----------
def fan_chart(years: Sequence[int],
              percentiles: Dict[str, Sequence[float]],
              title: str = "Total Balance (Percentile Fan)") -> go.Figure:
    """Shaded 10–90 band with a median line."""
    n = len(years)
    p10 = _fit(percentiles.get("p10", []), n)
    p50 = _fit(percentiles.get("p50", []), n)
    p90 = _fit(percentiles.get("p90", []), n)

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=years, y=p90, mode="lines", line=dict(width=0),
        hoverinfo="skip", showlegend=False
    ))
    fig.add_trace(go.Scatter(
        x=years, y=p10, mode="lines", line=dict(width=0),
        fill="tonexty", name="10–90%",
        hovertemplate="%{x}<br>$%{y:,.0f}<extra></extra>"
    ))
    fig.add_trace(go.Scatter(
        x=years, y=p50, mode="lines", name="Median",
        hovertemplate="%{x}<br>$%{y:,.0f}<extra></extra>"
    ))
    fig.update_layout(title=title, **_LAYOUT)
    return fig


# ---------- Account balances (stacked) ----------
def account_area_chart(frame: pd.DataFrame, title: str = "Account Balances") -> go.Figure:
    """Stacked end-of-year balances from ``SimulationResult.to_frame()``."""
    fig = go.Figure()
    for kind, label in ACCOUNT_LABELS.items():
        col = f"end_{kind}"
        if col in frame:
            fig.add_trace(go.Scatter(
                x=frame.index, y=frame[col], mode="lines", name=label,
                stackgroup="one",
                hovertemplate="%{x}<br>$%{y:,.0f}<extra></extra>"
            ))
    fig.update_layout(title=title, **_LAYOUT)
    return fig


# ---------- Withdrawals by account (stacked bars) ----------
def withdrawals_chart(frame: pd.DataFrame, title: str = "Withdrawals by Account") -> go.Figure:
    fig = go.Figure()
    for kind in ("lif", "rrsp", "non_reg", "tfsa"):
        col = f"withdrawal_{kind}"
        if col in frame:
            fig.add_bar(x=frame.index, y=frame[col], name=ACCOUNT_LABELS[kind])
    if "rrif_minimum" in frame:
        fig.add_trace(go.Scatter(
            x=frame.index, y=frame["rrif_minimum"], mode="lines", name="RRIF minimum",
            line=dict(dash="dot")
        ))
    fig.update_layout(barmode="stack", title=title, **_LAYOUT)
    return fig


# ---------- Taxes over time (stacked bars) ----------
def tax_chart(frame: pd.DataFrame, title: str = "Taxes Over Time") -> go.Figure:
    """
    Stacked bars of each year's tax liability, with the OAS clawback shown
    separately.  Missing columns are treated as zeros.
    """
    n = len(frame)

    def vec(key: str) -> List[float]:
        return list(frame[key]) if key in frame else [0.0] * n

    owed = vec("tax_owed")
    clawback = vec("oas_clawback")
    fig = go.Figure()
    fig.add_bar(x=frame.index, y=[max(0.0, t - c) for t, c in zip(owed, clawback)], name="Income tax")
    fig.add_bar(x=frame.index, y=clawback, name="OAS clawback")
    fig.update_layout(barmode="stack", title=title, **_LAYOUT)
    return fig


# ---------- Success gauge ----------
def success_gauge(success_prob: float) -> go.Figure:
    pct = max(0.0, min(100.0, float(success_prob) * 100.0))  # clamp 0–100
    fig = go.Figure(go.Indicator(
        mode="gauge+number",
        value=round(pct, 1),
        number={"suffix": "%"},
        gauge={
            "axis": {"range": [0, 100]},
            "bar": {"thickness": 0.35},
            "steps": [
                {"range": [0, 60],  "color": "#ef4444"},  # red-500
                {"range": [60, 80], "color": "#f59e0b"},  # amber-500
                {"range": [80, 100],"color": "#22c55e"},  # green-500
            ],
        }
    ))
    fig.update_layout(template="plotly_white", height=220, margin=dict(l=10, r=10, t=10, b=10))
    return fig


__all__ = ["fan_chart", "account_area_chart", "withdrawals_chart", "tax_chart", "success_gauge"]
