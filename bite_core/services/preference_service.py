# =============================================================================
# bite_core/services/preference_service.py
# Favorites aggregation and inferred preferences, served from the derived cache
# =============================================================================
"""
PreferenceService - the two derived caches behind personalization.

- favorite_aggregation: cuisine and price counts over the user's liked
  restaurants in the local store (2 min TTL)
- inferred_preferences: preferred cuisines with confidences, computed by the
  backend ``infer-user-preferences`` function (5 min TTL)

Mutations (like/unlike, user change) invalidate the affected kinds so the
next read never serves a value computed from the old data.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import logging

import pandas as pd

from bite_core.models import Collection
from bite_core.offline.derived_cache import (
    DEFAULT_AGGREGATION_TTL,
    DEFAULT_INFERENCE_TTL,
    DerivedDataCache,
)

logger = logging.getLogger(__name__)

FAVORITES_KIND = "favorite_aggregation"
INFERRED_KIND = "inferred_preferences"
INFER_FUNCTION = "infer-user-preferences"


@dataclass
class FavoritesSummary:
    cuisines: List[Dict[str, Any]] = field(default_factory=list)
    price_ranges: List[Dict[str, Any]] = field(default_factory=list)
    restaurant_ids: Set[str] = field(default_factory=set)
    loading: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.restaurant_ids


@dataclass
class InferredPreferences:
    cuisines: List[Dict[str, Any]] = field(default_factory=list)
    price_ranges: List[str] = field(default_factory=list)
    loading: bool = False

    @property
    def price_range(self) -> Optional[str]:
        return self.price_ranges[0] if self.price_ranges else None


def _ranked_counts(df: pd.DataFrame, column: str, label: str) -> List[Dict[str, Any]]:
    """Counts per value, highest first; ties keep first-seen order."""
    if column not in df.columns:
        return []
    counts = df[column].dropna().value_counts(sort=False)
    counts = counts.sort_values(ascending=False, kind="mergesort")
    return [{label: value, "count": int(count)} for value, count in counts.items()]


def aggregate_favorites(rows: List[Dict[str, Any]]) -> FavoritesSummary:
    """Cuisine and price-range counts plus the set of liked restaurant ids."""
    if not rows:
        return FavoritesSummary()
    df = pd.DataFrame(rows)
    ids = df["restaurant_id"].dropna().astype(str) if "restaurant_id" in df.columns else []
    return FavoritesSummary(
        cuisines=_ranked_counts(df, "cuisine", "cuisine"),
        price_ranges=_ranked_counts(df, "price", "price"),
        restaurant_ids=set(ids),
    )


class PreferenceService:
    """
    Usage:
        prefs = PreferenceService(store, cache, backend)
        prefs.set_user("u-1")
        summary = await prefs.favorites()
        await prefs.like_restaurant({"id": "l-1", "restaurant_id": "r-9", ...})
    """

    def __init__(
        self,
        store,
        cache: DerivedDataCache,
        backend=None,
        aggregation_ttl: float = DEFAULT_AGGREGATION_TTL,
        inference_ttl: float = DEFAULT_INFERENCE_TTL,
    ):
        self.store = store
        self.cache = cache
        self.backend = backend
        self.user_id: Optional[str] = None

        cache.register(FAVORITES_KIND, self._compute_favorites, ttl=aggregation_ttl,
                       default=FavoritesSummary())
        cache.register(INFERRED_KIND, self._compute_inferred, ttl=inference_ttl,
                       default=InferredPreferences())

    def set_user(self, user_id: Optional[str]) -> None:
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self.cache.invalidate(FAVORITES_KIND)
        self.cache.invalidate(INFERRED_KIND)

    def on_collection_changed(self, collection: Collection) -> None:
        """Source-data hook for writes made outside this service (sync hydration)."""
        if Collection(collection) == Collection.LIKED_RESTAURANTS:
            self.cache.invalidate(FAVORITES_KIND)

    # =========================================================================
    # READS
    # =========================================================================

    async def favorites(self, wait: bool = True) -> FavoritesSummary:
        if self.user_id is None:
            return FavoritesSummary(loading=False)
        read = await self.cache.read(FAVORITES_KIND, wait=wait)
        summary: FavoritesSummary = read.value
        return FavoritesSummary(
            cuisines=list(summary.cuisines),
            price_ranges=list(summary.price_ranges),
            restaurant_ids=set(summary.restaurant_ids),
            loading=read.loading,
        )

    async def inferred(self, wait: bool = True) -> InferredPreferences:
        if self.user_id is None:
            return InferredPreferences(loading=False)
        read = await self.cache.read(INFERRED_KIND, wait=wait)
        prefs: InferredPreferences = read.value
        return InferredPreferences(
            cuisines=list(prefs.cuisines),
            price_ranges=list(prefs.price_ranges),
            loading=read.loading,
        )

    async def _compute_favorites(self) -> FavoritesSummary:
        user_id = self.user_id
        if user_id is None:
            return FavoritesSummary()
        rows = await asyncio.to_thread(self.store.get_all, Collection.LIKED_RESTAURANTS)
        rows = [r for r in rows if r.get("user_id") in (None, user_id)]
        return aggregate_favorites(rows)

    async def _compute_inferred(self) -> InferredPreferences:
        user_id = self.user_id
        if user_id is None or self.backend is None:
            return InferredPreferences()

        profile = await asyncio.to_thread(self.backend.fetch_profile, user_id)
        if profile and profile.get("personalization_enabled") is False:
            logger.debug(f"Personalization disabled for {user_id}")
            return InferredPreferences()

        data = await asyncio.to_thread(self.backend.invoke, INFER_FUNCTION, {"userId": user_id})
        price = data.get("preferredPriceRange") or []
        return InferredPreferences(
            cuisines=list(data.get("preferredCuisines") or []),
            price_ranges=[price] if isinstance(price, str) else list(price),
        )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def like_restaurant(self, liked: Dict[str, Any]) -> None:
        """Cache a liked-restaurant row (needs ``restaurant_id``)."""
        if "restaurant_id" not in liked:
            raise ValueError("Liked restaurant needs a restaurant_id")
        row = dict(liked)
        row.setdefault("user_id", self.user_id)
        row_id = str(row.get("id") or row["restaurant_id"])
        await asyncio.to_thread(self.store.put, Collection.LIKED_RESTAURANTS, row_id, row)
        self.cache.invalidate(FAVORITES_KIND)

    async def unlike_restaurant(self, restaurant_id: str) -> int:
        """Remove every liked row for a restaurant; returns how many were removed."""
        rows = await asyncio.to_thread(self.store.get_all, Collection.LIKED_RESTAURANTS)
        removed = 0
        for row in rows:
            if str(row.get("restaurant_id")) == str(restaurant_id):
                row_id = str(row.get("id") or row["restaurant_id"])
                if await asyncio.to_thread(self.store.delete, Collection.LIKED_RESTAURANTS, row_id):
                    removed += 1
        self.cache.invalidate(FAVORITES_KIND)
        return removed
