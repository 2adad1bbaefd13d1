"""Restaurant status reconciliation."""

from .reconciler import (
    StatusReconciler,
    StatusObservation,
    DEFAULT_FRESHNESS_THRESHOLD,
    DEFAULT_CHECK_INTERVAL,
)

__all__ = [
    "StatusReconciler",
    "StatusObservation",
    "DEFAULT_FRESHNESS_THRESHOLD",
    "DEFAULT_CHECK_INTERVAL",
]
