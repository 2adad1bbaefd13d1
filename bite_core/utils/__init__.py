"""Shared helpers for SwipeNBite core."""

from .timing import (
    Clock,
    Sleeper,
    ManualClock,
    system_clock,
    real_sleep,
    no_sleep,
    jitter,
    to_datetime,
    from_epoch,
)

__all__ = [
    "Clock",
    "Sleeper",
    "ManualClock",
    "system_clock",
    "real_sleep",
    "no_sleep",
    "jitter",
    "to_datetime",
    "from_epoch",
]
