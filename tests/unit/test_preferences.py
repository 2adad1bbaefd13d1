# =============================================================================
# tests/unit/test_preferences.py
# Unit Tests for Favorites Aggregation and Inferred Preferences
# =============================================================================

import pytest

from conftest import FakeBackend


def liked(row_id, restaurant_id, cuisine, price, user_id="u-1"):
    return {
        "id": row_id,
        "restaurant_id": restaurant_id,
        "cuisine": cuisine,
        "price": price,
        "user_id": user_id,
    }


@pytest.fixture
def service(store, monotonic):
    from bite_core.offline import DerivedDataCache
    from bite_core.services import PreferenceService

    backend = FakeBackend()
    backend.functions["infer-user-preferences"] = {
        "preferredCuisines": [{"cuisine": "thai", "confidence": 0.8}],
        "preferredPriceRange": "$$",
    }
    prefs = PreferenceService(store, DerivedDataCache(clock=monotonic), backend=backend,
                              aggregation_ttl=120, inference_ttl=300)
    prefs.set_user("u-1")
    return prefs


class TestAggregateFavorites:
    """Tests for the pure aggregation"""

    def test_counts_ranked_highest_first(self):
        from bite_core.services import aggregate_favorites

        summary = aggregate_favorites([
            liked("l-1", "r-1", "thai", "$"),
            liked("l-2", "r-2", "italian", "$$"),
            liked("l-3", "r-3", "italian", "$$"),
            liked("l-4", "r-4", "mexican", "$"),
        ])

        assert summary.cuisines[0] == {"cuisine": "italian", "count": 2}
        assert [c["cuisine"] for c in summary.cuisines[1:]] == ["thai", "mexican"]
        assert summary.price_ranges == [{"price": "$", "count": 2}, {"price": "$$", "count": 2}]
        assert summary.restaurant_ids == {"r-1", "r-2", "r-3", "r-4"}

    def test_missing_columns(self):
        from bite_core.services import aggregate_favorites

        summary = aggregate_favorites([{"id": "l-1", "restaurant_id": "r-1"}])

        assert summary.cuisines == []
        assert summary.restaurant_ids == {"r-1"}

    def test_empty(self):
        from bite_core.services import aggregate_favorites

        assert aggregate_favorites([]).is_empty is True


class TestFavorites:
    """Tests for the favorite_aggregation cache"""

    @pytest.mark.asyncio
    async def test_zero_favorites(self, service):
        summary = await service.favorites()

        assert summary.is_empty is True
        assert summary.loading is False
        assert summary.cuisines == []

    @pytest.mark.asyncio
    async def test_no_user(self, store, monotonic):
        from bite_core.offline import DerivedDataCache
        from bite_core.services import PreferenceService

        prefs = PreferenceService(store, DerivedDataCache(clock=monotonic))
        summary = await prefs.favorites()

        assert summary.is_empty is True
        assert summary.loading is False

    @pytest.mark.asyncio
    async def test_like_invalidates(self, service):
        await service.favorites()

        await service.like_restaurant(liked("l-1", "r-7", "thai", "$"))
        summary = await service.favorites()

        assert summary.restaurant_ids == {"r-7"}
        assert service.cache.compute_count["favorite_aggregation"] == 2

    @pytest.mark.asyncio
    async def test_unlike_removes_all_rows(self, service):
        await service.like_restaurant(liked("l-1", "r-7", "thai", "$"))
        await service.like_restaurant(liked("l-2", "r-7", "thai", "$"))
        await service.like_restaurant(liked("l-3", "r-8", "sushi", "$$$"))

        removed = await service.unlike_restaurant("r-7")
        summary = await service.favorites()

        assert removed == 2
        assert summary.restaurant_ids == {"r-8"}

    @pytest.mark.asyncio
    async def test_other_users_rows_ignored(self, service):
        await service.like_restaurant(liked("l-1", "r-1", "thai", "$"))
        await service.like_restaurant(liked("l-2", "r-2", "thai", "$", user_id="u-2"))

        summary = await service.favorites()

        assert summary.restaurant_ids == {"r-1"}

    @pytest.mark.asyncio
    async def test_like_needs_restaurant_id(self, service):
        with pytest.raises(ValueError):
            await service.like_restaurant({"id": "l-1"})

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, service, monotonic):
        await service.favorites()
        monotonic.advance(60)
        await service.favorites()

        assert service.cache.compute_count["favorite_aggregation"] == 1


class TestInferredPreferences:
    """Tests for the inferred_preferences cache"""

    @pytest.mark.asyncio
    async def test_reads_backend_function(self, service):
        prefs = await service.inferred()

        assert prefs.cuisines == [{"cuisine": "thai", "confidence": 0.8}]
        assert prefs.price_range == "$$"
        assert service.backend.invocations == [("infer-user-preferences", {"userId": "u-1"})]

    @pytest.mark.asyncio
    async def test_personalization_disabled(self, service):
        service.backend.profiles["u-1"] = {"personalization_enabled": False}

        prefs = await service.inferred()

        assert prefs.cuisines == []
        assert service.backend.invocations == []

    @pytest.mark.asyncio
    async def test_function_failure_returns_default(self, service):
        from bite_core.errors import ProviderUnavailable

        service.backend.functions["infer-user-preferences"] = ProviderUnavailable(
            "function down", provider="infer-user-preferences"
        )

        prefs = await service.inferred()

        assert prefs.cuisines == []
        assert prefs.price_range is None

    @pytest.mark.asyncio
    async def test_user_change_invalidates(self, service, monotonic):
        await service.inferred()
        service.set_user("u-2")
        await service.inferred()

        assert [body["userId"] for _, body in service.backend.invocations] == ["u-1", "u-2"]
