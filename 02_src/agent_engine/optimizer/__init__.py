"""Position optimizer module."""

from .optimizer import DEFAULT_REDUCTION, UNHEALTHY_THRESHOLDS, PositionOptimizer

__all__ = ["DEFAULT_REDUCTION", "PositionOptimizer", "UNHEALTHY_THRESHOLDS"]
