# =============================================================================
# bite_core/services/sweep_service.py
# Bounded background refresh of the stalest restaurants
# =============================================================================
"""
StaleSweepJob - re-enriches the restaurants whose data is oldest.

One run takes at most ``batch_size`` restaurants whose ``last_synced_at`` is
missing or older than ``threshold_days``, refreshes them one by one with a
random pause between items, and reports per-item outcomes. A failing item is
recorded and the run moves on. Runs are idempotent: a restaurant refreshed by
an overlapping run is simply no longer selected.
"""

from __future__ import annotations
import asyncio
import random
from datetime import timedelta
from typing import Optional

from bite_core.models import SweepItemResult, SweepReport
from bite_core.utils.timing import Clock, Sleeper, from_epoch, jitter, real_sleep, system_clock
from .base_service import BaseService

DEFAULT_THRESHOLD_DAYS = 7
DEFAULT_BATCH_SIZE = 10
DEFAULT_MIN_DELAY = 2.0
DEFAULT_MAX_DELAY = 4.0


class StaleSweepJob(BaseService):
    """
    Usage:
        job = StaleSweepJob(backend, enrichment_service)
        report = await job.run()
        report.to_dict()
    """

    def __init__(
        self,
        backend,
        refresher,
        clock: Clock = system_clock,
        sleep: Sleeper = real_sleep,
        rng: Optional[random.Random] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        min_delay: float = DEFAULT_MIN_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
    ):
        """
        Args:
            backend: BackendClient (fetch_stale_restaurants)
            refresher: Object with ``async refresh_restaurant(record)``,
                normally the EnrichmentService
        """
        super().__init__()
        if not 0 <= min_delay <= max_delay:
            raise ValueError("Delay range must satisfy 0 <= min_delay <= max_delay")
        self.backend = backend
        self.refresher = refresher
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.batch_size = batch_size
        self.threshold_days = threshold_days
        self.min_delay = min_delay
        self.max_delay = max_delay

    async def run(self) -> SweepReport:
        """
        Run one sweep.

        Raises:
            Exception: whatever the stale-restaurant query raised; in that
                case nothing was refreshed
        """
        start = self._clock()
        started_at = from_epoch(start)
        before = started_at - timedelta(days=self.threshold_days)

        restaurants = await asyncio.to_thread(
            self.backend.fetch_stale_restaurants, before, self.batch_size
        )
        report = SweepReport(started_at=started_at)

        if not restaurants:
            self.logger.info("No restaurants need refreshing")
        else:
            self.logger.info(f"Sweeping {len(restaurants)} stale restaurants")

        for index, restaurant in enumerate(restaurants):
            report.items.append(await self._refresh_one(restaurant))
            self.report_progress(
                index + 1, len(restaurants), f"Refreshed {index + 1}/{len(restaurants)}"
            )
            if index < len(restaurants) - 1:
                await self._sleep(jitter(self._rng, self.min_delay, self.max_delay))

        finish = self._clock()
        report.finished_at = from_epoch(finish)
        report.duration_seconds = finish - start
        self.logger.info(
            f"Sweep complete: {report.success_count}/{report.total} refreshed, "
            f"{report.failure_count} failed"
        )
        return report

    async def _refresh_one(self, restaurant) -> SweepItemResult:
        restaurant_id = str(restaurant.get("id"))
        name = restaurant.get("name")
        item_start = self._clock()
        try:
            result = await self.refresher.refresh_restaurant(restaurant)
        except Exception as e:
            self.logger.warning(f"Refresh failed for {restaurant_id} ({name}): {e}")
            return SweepItemResult(
                restaurant_id=restaurant_id,
                restaurant_name=name,
                success=False,
                error=getattr(e, "message", None) or str(e),
                elapsed_seconds=self._clock() - item_start,
            )

        sources = {}
        if result is not None:
            sources = {
                provider: outcome.to_dict()
                for provider, outcome in result.restaurant.sources.items()
            }
        return SweepItemResult(
            restaurant_id=restaurant_id,
            restaurant_name=name,
            success=True,
            sources=sources,
            elapsed_seconds=self._clock() - item_start,
        )
