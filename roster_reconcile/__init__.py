"""Reconcile event rosters against per-participant ticket documents."""

__version__ = "1.0.0"
