# =============================================================================
# tests/unit/test_sweep.py
# Unit Tests for the Stale-Sweep Job
# =============================================================================

import pytest

from conftest import FakeBackend, START_EPOCH, iso_at


class StubRefresher:
    """refresh_restaurant double; fails for the given ids"""

    def __init__(self, fail_ids=(), clock=None, step=0.0):
        self.fail_ids = set(fail_ids)
        self.refreshed = []
        self.clock = clock
        self.step = step

    async def refresh_restaurant(self, record):
        if self.clock is not None:
            self.clock.advance(self.step)
        if record["id"] in self.fail_ids:
            from bite_core.errors import ProviderUnavailable

            raise ProviderUnavailable(f"All providers failed for {record['id']}", provider="enrichment")
        self.refreshed.append(record["id"])
        return None


def stale_rows(count, synced_days_ago=30):
    return [
        {
            "id": f"r-{i:02d}",
            "name": f"Restaurant {i}",
            "latitude": 40.7,
            "longitude": -73.9,
            "last_synced_at": iso_at(START_EPOCH, -synced_days_ago * 86400 + i),
        }
        for i in range(count)
    ]


@pytest.fixture
def make_job(clock, sleeper, rng):
    from bite_core.services import StaleSweepJob

    def _make(backend, refresher, batch_size=10):
        return StaleSweepJob(
            backend,
            refresher,
            clock=clock,
            sleep=sleeper,
            rng=rng,
            batch_size=batch_size,
            threshold_days=7,
            min_delay=2.0,
            max_delay=4.0,
        )

    return _make


class TestStaleSweep:
    """Tests for one sweep run"""

    @pytest.mark.asyncio
    async def test_failure_in_middle_does_not_stop_run(self, make_job, sleeper):
        """Ten items, item five throws: ten processed, one failure"""
        backend = FakeBackend(stale_rows(10))
        refresher = StubRefresher(fail_ids={"r-04"})

        report = await make_job(backend, refresher).run()

        assert report.total == 10
        assert report.failure_count == 1
        assert report.success_count == 9
        failed = [item for item in report.items if not item.success]
        assert failed[0].restaurant_id == "r-04"
        assert "All providers failed" in failed[0].error
        assert len(refresher.refreshed) == 9

    @pytest.mark.asyncio
    async def test_delay_between_items_only(self, make_job, sleeper):
        backend = FakeBackend(stale_rows(10))

        await make_job(backend, StubRefresher(fail_ids={"r-04"})).run()

        assert len(sleeper.delays) == 9
        assert all(2.0 <= d <= 4.0 for d in sleeper.delays)

    @pytest.mark.asyncio
    async def test_batch_limit_and_staleness_order(self, make_job):
        rows = stale_rows(12)
        rows.append({"id": "r-new", "name": "Never synced", "latitude": 1, "longitude": 1,
                     "last_synced_at": None})
        rows.append({"id": "r-fresh", "name": "Fresh", "latitude": 1, "longitude": 1,
                     "last_synced_at": iso_at(START_EPOCH, -86400)})
        refresher = StubRefresher()

        report = await make_job(FakeBackend(rows), refresher, batch_size=5).run()

        assert report.total == 5
        assert refresher.refreshed == ["r-new", "r-00", "r-01", "r-02", "r-03"]

    @pytest.mark.asyncio
    async def test_nothing_stale(self, make_job, sleeper):
        rows = [{"id": "r-1", "name": "Fresh", "latitude": 1, "longitude": 1,
                 "last_synced_at": iso_at(START_EPOCH, -3600)}]

        report = await make_job(FakeBackend(rows), StubRefresher()).run()

        assert report.total == 0
        assert sleeper.delays == []
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, make_job):
        backend = FakeBackend(stale_rows(3))
        backend.stale_query_error = ConnectionError("database unreachable")
        refresher = StubRefresher()

        with pytest.raises(ConnectionError):
            await make_job(backend, refresher).run()

        assert refresher.refreshed == []

    @pytest.mark.asyncio
    async def test_report_timing_uses_clock(self, make_job, clock):
        backend = FakeBackend(stale_rows(3))
        refresher = StubRefresher(clock=clock, step=1.5)

        report = await make_job(backend, refresher).run()

        assert report.duration_seconds == pytest.approx(4.5)
        assert report.items[0].elapsed_seconds == pytest.approx(1.5)

    @pytest.mark.asyncio
    async def test_progress_callback(self, make_job):
        progress = []
        job = make_job(FakeBackend(stale_rows(4)), StubRefresher())
        job.set_progress_callback(lambda pct, msg: progress.append(pct))

        await job.run()

        assert progress == [25, 50, 75, 100]

    @pytest.mark.asyncio
    async def test_report_exports(self, make_job):
        report = await make_job(FakeBackend(stale_rows(3)), StubRefresher(fail_ids={"r-01"})).run()

        summary = report.to_dict()
        assert summary["total"] == 3
        assert summary["failure_count"] == 1

        df = report.to_dataframe()
        assert list(df["restaurant_id"]) == ["r-00", "r-01", "r-02"]
        assert df["success"].sum() == 2

    def test_invalid_delay_range(self, clock):
        from bite_core.services import StaleSweepJob

        with pytest.raises(ValueError):
            StaleSweepJob(FakeBackend(), StubRefresher(), clock=clock, min_delay=5.0, max_delay=1.0)


class TestSweepWithEnrichment:
    """The sweep driving the real enrichment pipeline"""

    @pytest.mark.asyncio
    async def test_refreshed_rows_leave_the_stale_set(self, make_job, clock, sleeper, rng):
        from bite_core.api.reviews_connector import MockReviewsConnector
        from bite_core.api.base_connector import ProviderConfig
        from bite_core.services import EnrichmentService

        backend = FakeBackend(stale_rows(3))
        enrichment = EnrichmentService(
            {"reviews": MockReviewsConnector(ProviderConfig("reviews_mock", "http://mock"))},
            backend=backend,
            clock=clock,
            sleep=sleeper,
            rng=rng,
        )

        first = await make_job(backend, enrichment).run()
        second = await make_job(backend, enrichment).run()

        assert first.success_count == 3
        assert second.total == 0
        assert backend.restaurants["r-00"]["last_synced_at"] == iso_at(START_EPOCH)
        assert first.items[0].sources["reviews"]["success"] is True
