"""Presentation helpers (plotly figures) for simulation output."""

from . import charts  # noqa: F401

__all__ = ["charts"]
