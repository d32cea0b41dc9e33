"""Reconciliation Layer - Rule application and self-healing."""

from webcleaner.layers.reconciliation.effects import (
    BlurEffect,
    Effect,
    EnlargeEffect,
    HideEffect,
    effect_for,
)
from webcleaner.layers.reconciliation.engine import ApplyReport, EngineState, ReconciliationEngine

__all__ = [
    "ApplyReport",
    "BlurEffect",
    "Effect",
    "EngineState",
    "EnlargeEffect",
    "HideEffect",
    "ReconciliationEngine",
    "effect_for",
]
