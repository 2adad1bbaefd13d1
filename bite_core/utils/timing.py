# =============================================================================
# bite_core/utils/timing.py
# Injectable clock, delay and randomness sources
# =============================================================================
"""
Time and randomness seams.

Every component that reads the time, sleeps or draws a random jitter takes
these as constructor arguments, so tests run with a manual clock and zero
delay.
"""

from __future__ import annotations
import asyncio
import random
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import pandas as pd

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def system_clock() -> float:
    """Wall-clock seconds since the epoch."""
    return time.time()


async def real_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def no_sleep(seconds: float) -> None:
    """Zero-delay sleeper; still yields to the event loop."""
    await asyncio.sleep(0)


def jitter(rng: random.Random, low: float, high: float) -> float:
    """Uniform random delay in [low, high] seconds."""
    return rng.uniform(low, high)


def to_datetime(value) -> Optional[datetime]:
    """
    Parse a backend timestamp into an aware UTC datetime.

    Accepts ISO strings (with or without offset), datetimes, pandas
    Timestamps and epoch seconds. Returns None for empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert("UTC").to_pydatetime()


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class ManualClock:
    """
    Settable clock for tests and replays.

    Usage:
        clock = ManualClock(1_700_000_000)
        clock.advance(120)
    """

    def __init__(self, start: float = 0.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now
