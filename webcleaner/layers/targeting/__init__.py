"""Targeting Layer - Pointer target refinement."""

from webcleaner.layers.targeting.target_refiner import TargetRefiner

__all__ = ["TargetRefiner"]
