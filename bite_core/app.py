# =============================================================================
# bite_core/app.py
# Composition root: wires store, caches, reconciler, enrichment and sync
# =============================================================================
"""
BiteCore - the object a UI layer talks to.

Every read is served from the local store or a derived cache (always
available, possibly stale). Freshness work happens behind it: the status
reconciler per observed restaurant, the enrichment pipeline per card, the
sync manager on login/reconnect/foreground, the stale sweep on a schedule.

Usage:
    core = BiteCore.create(load_settings())
    await core.start()
    await core.login("user-1")

    restaurants = core.get_restaurants()
    async with await core.observe_status("r-1", place_id="ChIJ...") as obs:
        ...
    await core.close()
"""

from __future__ import annotations
import asyncio
import random
import time
from typing import Any, Callable, Dict, List, Optional
import logging

from bite_core.api import ProviderRegistry
from bite_core.config import Settings, load_settings
from bite_core.data import BackendClient
from bite_core.errors import ErrorContext, NotFound, ProviderUnavailable, safe_execute, set_notifier
from bite_core.models import Collection, EnrichmentResult, EntityState, SyncResult
from bite_core.offline import ConnectionManager, DerivedDataCache, LocalStore, SyncManager
from bite_core.services import (
    EnrichmentService,
    FavoritesSummary,
    InferredPreferences,
    PreferenceService,
    ServiceResult,
    StaleSweepJob,
)
from bite_core.status import StatusObservation, StatusReconciler
from bite_core.utils.timing import Clock, Sleeper, real_sleep, system_clock

logger = logging.getLogger(__name__)


class BiteCore:
    """Owns one instance of every cache/reconciliation component."""

    def __init__(
        self,
        settings: Settings,
        store: LocalStore,
        backend: Optional[BackendClient] = None,
        registry: Optional[ProviderRegistry] = None,
        push_source=None,
        connection: Optional[ConnectionManager] = None,
        clock: Clock = system_clock,
        monotonic: Clock = time.monotonic,
        sleep: Sleeper = real_sleep,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.store = store
        self.backend = backend
        self.registry = registry
        self.connection = connection
        rng = rng or random.Random()

        self.cache = DerivedDataCache(clock=monotonic)
        self.preferences = PreferenceService(
            store,
            self.cache,
            backend=backend,
            aggregation_ttl=settings.aggregation_ttl,
            inference_ttl=settings.inference_ttl,
        )

        connectors = registry.enrichment_connectors() if registry else {}
        self.enrichment = EnrichmentService(
            connectors,
            backend=backend,
            clock=clock,
            sleep=sleep,
            rng=rng,
            jitter_max=settings.jitter_max,
            provider_timeout=settings.provider_timeout,
        )

        self.reconciler = StatusReconciler(
            fetch_fn=self._fetch_status,
            refresh_fn=self._refresh_status,
            push_source=push_source,
            clock=clock,
            sleep=sleep,
            freshness_threshold=settings.freshness_threshold,
            check_interval=settings.check_interval,
        )

        self.sync: Optional[SyncManager] = None
        self.sweep: Optional[StaleSweepJob] = None
        if backend is not None:
            self.sync = SyncManager(
                store,
                backend,
                connection=connection,
                hydrate_restaurant_limit=settings.hydrate_restaurant_limit,
            )
            self.sync.register_hydration_callback(self.preferences.on_collection_changed)
            self.sweep = StaleSweepJob(
                backend,
                self.enrichment,
                clock=clock,
                sleep=sleep,
                rng=rng,
                batch_size=settings.sweep_batch_size,
                threshold_days=settings.sweep_threshold_days,
                min_delay=settings.sweep_min_delay,
                max_delay=settings.sweep_max_delay,
            )

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        use_mocks: bool = False,
        notifier: Optional[Callable[[str, str], None]] = None,
    ) -> BiteCore:
        """
        Build a BiteCore from settings.

        Without backend credentials the core runs local-only: cached reads
        and enrichment work, sync and sweep are disabled.
        """
        settings = settings or load_settings()
        if notifier is not None:
            set_notifier(notifier)

        store = LocalStore(settings.db_path).initialize()
        backend = BackendClient.from_settings(settings) if settings.backend_configured else None
        if backend is None:
            logger.warning("Supabase not configured; running in local-only mode")

        return cls(
            settings,
            store,
            backend=backend,
            registry=ProviderRegistry(settings, use_mocks=use_mocks),
            connection=ConnectionManager(settings.supabase_url),
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, monitor_connection: bool = True) -> None:
        """Bind to the running loop, connect realtime and start connection monitoring."""
        if self.sync is not None:
            self.sync.bind_loop(asyncio.get_running_loop())

        if self.reconciler.push_source is None and self.settings.backend_configured:
            from bite_core.data import RealtimeStatusSource

            with ErrorContext("Connecting realtime status updates", notify_user=False):
                self.reconciler.push_source = await RealtimeStatusSource.connect(self.settings)
            if self.reconciler.push_source is None:
                logger.warning("Realtime unavailable, relying on staleness checks")

        if self.connection is not None:
            await asyncio.to_thread(self.connection.initialize, monitor_connection)

    async def close(self) -> None:
        if self.sync is not None:
            await self.sync.close()
        if self.connection is not None:
            self.connection.stop_monitoring()
        if self.registry is not None:
            self.registry.close()
        self.store.close()

    # =========================================================================
    # SESSION
    # =========================================================================

    async def login(self, user_id: str) -> SyncResult:
        self.preferences.set_user(user_id)
        if self.sync is None:
            return SyncResult(ran=False)
        return await self.sync.on_authenticated(user_id)

    async def logout(self) -> None:
        """Forget the user and wipe every cached collection."""
        self.preferences.set_user(None)
        if self.sync is not None:
            await self.sync.on_authenticated(None)
        await asyncio.to_thread(self.store.clear_all)
        self.cache.invalidate_all()

    async def on_foreground(self) -> SyncResult:
        if self.sync is None:
            return SyncResult(ran=False)
        return await self.sync.on_foreground()

    # =========================================================================
    # CACHED READS
    # =========================================================================

    def get_restaurants(self) -> List[Dict[str, Any]]:
        return safe_execute(self.store.get_all, Collection.RESTAURANTS, default=[],
                            error_message="Couldn't read saved restaurants")

    def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        return safe_execute(self.store.get, Collection.RESTAURANTS, restaurant_id,
                            error_message="Couldn't read saved restaurant")

    def get_orders(self) -> List[Dict[str, Any]]:
        return safe_execute(self.store.get_all, Collection.ORDERS, default=[],
                            error_message="Couldn't read saved orders")

    def get_liked_restaurants(self) -> List[Dict[str, Any]]:
        return safe_execute(self.store.get_all, Collection.LIKED_RESTAURANTS, default=[],
                            error_message="Couldn't read saved favorites")

    async def favorites(self, wait: bool = True) -> FavoritesSummary:
        return await self.preferences.favorites(wait=wait)

    async def inferred_preferences(self, wait: bool = True) -> InferredPreferences:
        return await self.preferences.inferred(wait=wait)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def place_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Queue an order in the outbox and push it right away when online."""
        if self.sync is None:
            await asyncio.to_thread(self.store.put_order, order, False)
            return order
        await self.sync.create_order_offline(order)
        if self.sync.is_online:
            await self.sync.sync_now()
        return order

    async def like_restaurant(self, liked: Dict[str, Any]) -> None:
        await self.preferences.like_restaurant(liked)

    async def unlike_restaurant(self, restaurant_id: str) -> int:
        return await self.preferences.unlike_restaurant(restaurant_id)

    # =========================================================================
    # STATUS
    # =========================================================================

    def _fetch_status(self, restaurant_id: str) -> Dict[str, Any]:
        if self.backend is not None:
            return self.backend.fetch_restaurant_status(restaurant_id)
        cached = self.store.get(Collection.RESTAURANTS, restaurant_id)
        if cached is None:
            raise NotFound(
                f"Restaurant {restaurant_id} not cached",
                collection=Collection.RESTAURANTS.value,
                entity_id=restaurant_id,
            )
        return cached

    def _refresh_status(self, restaurant_id: str, place_id: Optional[str]) -> Dict[str, Any]:
        if self.backend is None:
            raise ProviderUnavailable(
                "Status refresh needs a backend connection",
                provider="update-restaurant-status",
                retryable=False,
            )
        return self.backend.invoke_status_refresh(restaurant_id, place_id)

    async def observe_status(self, restaurant_id: str, place_id: Optional[str] = None) -> StatusObservation:
        return await self.reconciler.observe(restaurant_id, place_id)

    async def refresh_status(self, restaurant_id: str) -> bool:
        return await self.reconciler.refresh(restaurant_id)

    def status_state(self, restaurant_id: str) -> EntityState:
        return self.reconciler.get_state(restaurant_id)

    # =========================================================================
    # ENRICHMENT / SWEEP
    # =========================================================================

    async def enrich(self, restaurant: Dict[str, Any], enabled: bool = True) -> EnrichmentResult:
        return await self.enrichment.enrich(restaurant, enabled=enabled)

    async def run_sweep(self) -> ServiceResult:
        """Run one stale sweep; a failed stale query comes back as a failed result."""
        if self.sweep is None:
            return ServiceResult.fail("Stale sweep needs a backend connection", error_code="CONFIG_001")
        return await self.sweep.safe_execute("Stale restaurant sweep", self.sweep.run)
