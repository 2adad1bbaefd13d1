# =============================================================================
# tests/unit/test_status_refresh.py
# Unit Tests for the Backend-side Status Refresh
# =============================================================================

import pytest

from conftest import FakeBackend, START_EPOCH, iso_at


class StubPlaces:
    def __init__(self, fields=None, error=None):
        self.fields = fields or {}
        self.error = error
        self.place_ids = []

    def fetch_status(self, place_id):
        self.place_ids.append(place_id)
        if self.error is not None:
            raise self.error
        return dict(self.fields)


class TestStatusRefreshService:
    """Tests for stamping status columns"""

    def test_writes_place_fields_and_timestamp(self, clock, sample_restaurant):
        from bite_core.services import StatusRefreshService

        backend = FakeBackend([sample_restaurant])
        places = StubPlaces({"is_open_now": False, "status": "closed_temporarily"})
        service = StatusRefreshService(backend, places, clock=clock)

        row = service.refresh("r-1", place_id="ChIJ-luigi")

        assert places.place_ids == ["ChIJ-luigi"]
        assert row["status"] == "closed_temporarily"
        assert row["status_last_checked"] == iso_at(START_EPOCH)

    def test_provider_failure_is_partial_update(self, clock, sample_restaurant):
        from bite_core.errors import ProviderUnavailable
        from bite_core.services import StatusRefreshService

        backend = FakeBackend([{**sample_restaurant, "is_open_now": True}])
        places = StubPlaces(error=ProviderUnavailable("quota", provider="places_google", status_code=429))
        service = StatusRefreshService(backend, places, clock=clock)

        row = service.refresh("r-1", place_id="ChIJ-luigi")

        assert backend.updates == [("r-1", {"status_last_checked": iso_at(START_EPOCH)})]
        assert row["is_open_now"] is True

    def test_without_place_id_only_stamps(self, clock, sample_restaurant):
        from bite_core.services import StatusRefreshService

        places = StubPlaces({"is_open_now": True})
        service = StatusRefreshService(FakeBackend([sample_restaurant]), places, clock=clock)

        fields = service.status_fields(None)

        assert fields == {"status_last_checked": iso_at(START_EPOCH)}
        assert places.place_ids == []

    @pytest.mark.asyncio
    async def test_drives_reconciler_refresh(self, clock, sample_restaurant):
        """Refreshed rows carry a newer status_last_checked, so the reconciler applies them"""
        from bite_core.models import EntityState
        from bite_core.services import StatusRefreshService
        from bite_core.status import StatusReconciler

        backend = FakeBackend([{**sample_restaurant, "status_last_checked": iso_at(START_EPOCH, -3600)}])
        service = StatusRefreshService(backend, StubPlaces({"is_open_now": True}), clock=clock)
        reconciler = StatusReconciler(
            fetch_fn=backend.fetch_restaurant_status,
            refresh_fn=service.refresh,
            clock=clock,
        )

        await reconciler.load("r-1", place_id="ChIJ-luigi")
        assert reconciler.get_state("r-1") == EntityState.STALE

        assert await reconciler.check_staleness("r-1") == EntityState.FRESH
        assert reconciler.get_status("r-1").is_open_now is True
