# =============================================================================
# bite_core/status/reconciler.py
# Per-entity status freshness: initial load, push updates, staleness refresh
# =============================================================================
"""
StatusReconciler - keeps each observed restaurant's status fresh.

Lifecycle per entity:

    UNKNOWN --load--> FRESH | STALE
    FRESH --age > threshold--> STALE
    STALE --check--> REFRESHING --> FRESH (newer data) | STALE (failure)
    any --newer push--> FRESH

Initial loads, push events and refresh results all go through
``apply_update``; an update whose ``last_checked`` is not strictly newer than
the held one is dropped, so delivery order never matters.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import logging

from bite_core.errors import ConflictIgnored, handle_error
from bite_core.models import EntityState, RestaurantStatus
from bite_core.utils.timing import Clock, Sleeper, from_epoch, real_sleep, system_clock

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_THRESHOLD = 15 * 60.0
DEFAULT_CHECK_INTERVAL = 5 * 60.0

# (entity_id) -> backend record with status columns
FetchFn = Callable[[str], Dict[str, Any]]
# (entity_id, place_id) -> refreshed backend record
RefreshFn = Callable[[str, Optional[str]], Dict[str, Any]]
Listener = Callable[[str, RestaurantStatus], None]


@dataclass
class _Tracked:
    status: Optional[RestaurantStatus] = None
    state: EntityState = EntityState.UNKNOWN
    place_id: Optional[str] = None
    refresh_task: Optional[asyncio.Task] = None
    listeners: List[Listener] = field(default_factory=list)


class StatusReconciler:
    """
    Usage:
        reconciler = StatusReconciler(
            fetch_fn=backend.fetch_restaurant_status,
            refresh_fn=backend.invoke_status_refresh,
            push_source=realtime_source,
        )
        async with await reconciler.observe("r-1", place_id="ChIJ...") as obs:
            async for status in obs.updates():
                ...
    """

    def __init__(
        self,
        fetch_fn: FetchFn,
        refresh_fn: RefreshFn,
        push_source=None,
        clock: Clock = system_clock,
        sleep: Sleeper = real_sleep,
        freshness_threshold: float = DEFAULT_FRESHNESS_THRESHOLD,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
    ):
        self._fetch_fn = fetch_fn
        self._refresh_fn = refresh_fn
        self.push_source = push_source
        self._clock = clock
        self._sleep = sleep
        self.freshness_threshold = freshness_threshold
        self.check_interval = check_interval
        self._entities: Dict[str, _Tracked] = {}
        self.refresh_calls: Dict[str, int] = {}

    def _tracked(self, entity_id: str) -> _Tracked:
        return self._entities.setdefault(entity_id, _Tracked())

    def _now(self) -> datetime:
        return from_epoch(self._clock())

    def _is_expired(self, status: RestaurantStatus) -> bool:
        age = status.age_seconds(self._now())
        return age is None or age > self.freshness_threshold

    # =========================================================================
    # READS
    # =========================================================================

    def get_status(self, entity_id: str) -> Optional[RestaurantStatus]:
        tracked = self._entities.get(entity_id)
        return tracked.status if tracked else None

    def get_state(self, entity_id: str) -> EntityState:
        tracked = self._entities.get(entity_id)
        return tracked.state if tracked else EntityState.UNKNOWN

    def is_refreshing(self, entity_id: str) -> bool:
        return self.get_state(entity_id) == EntityState.REFRESHING

    # =========================================================================
    # REDUCER
    # =========================================================================

    def apply_update(self, entity_id: str, status: RestaurantStatus, source: str = "push") -> bool:
        """
        Apply a status if it is strictly newer than the held one.

        Args:
            entity_id: Restaurant id
            status: Incoming status
            source: "load", "push" or "refresh" (logging and state only)

        Returns:
            True if the status was applied
        """
        tracked = self._tracked(entity_id)
        held = tracked.status

        if held is not None and not status.is_newer_than(held):
            conflict = ConflictIgnored(
                f"Ignored {source} update for {entity_id}: not newer than held status",
                entity_id=entity_id,
                held=held.last_checked.isoformat() if held.last_checked else None,
                incoming=status.last_checked.isoformat() if status.last_checked else None,
            )
            logger.debug(f"[{conflict.code}] {conflict.message}")
            return False

        tracked.status = status
        if status.last_checked is None:
            tracked.state = EntityState.STALE
        elif source == "load" and self._is_expired(status):
            tracked.state = EntityState.STALE
        else:
            tracked.state = EntityState.FRESH

        logger.debug(f"Applied {source} status for {entity_id} -> {tracked.state.value}")
        for listener in list(tracked.listeners):
            try:
                listener(entity_id, status)
            except Exception as e:
                logger.error(f"Error in status listener for {entity_id}: {e}")
        return True

    def handle_push(self, entity_id: str, record: Dict[str, Any]) -> bool:
        """Push producer: a realtime row update for one restaurant."""
        return self.apply_update(entity_id, RestaurantStatus.from_record(record), source="push")

    # =========================================================================
    # LOAD / STALENESS / REFRESH
    # =========================================================================

    async def load(self, entity_id: str, place_id: Optional[str] = None) -> Optional[RestaurantStatus]:
        """Initial fetch from the backend. A failed load leaves the entity STALE."""
        tracked = self._tracked(entity_id)
        if place_id:
            tracked.place_id = place_id

        try:
            record = await asyncio.to_thread(self._fetch_fn, entity_id)
        except Exception as e:
            handle_error(e, show_user_message=False)
            if tracked.state == EntityState.UNKNOWN:
                tracked.state = EntityState.STALE
            return tracked.status

        self.apply_update(entity_id, RestaurantStatus.from_record(record), source="load")
        return tracked.status

    async def check_staleness(self, entity_id: str) -> EntityState:
        """FRESH past the threshold becomes STALE; STALE triggers a refresh."""
        tracked = self._tracked(entity_id)
        if tracked.state == EntityState.FRESH and self._is_expired(tracked.status):
            tracked.state = EntityState.STALE
            logger.debug(f"Status for {entity_id} went stale")

        if tracked.state == EntityState.STALE:
            await self.refresh(entity_id)
        return tracked.state

    async def refresh(self, entity_id: str) -> bool:
        """
        Refresh one entity's status from the backend.

        At most one refresh per entity is in flight; a concurrent caller
        joins it. Failures are reported as transient notices, never raised.

        Returns:
            True if newer data was applied
        """
        tracked = self._tracked(entity_id)
        task = tracked.refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_refresh(entity_id, tracked))
            tracked.refresh_task = task
        return await asyncio.shield(task)

    async def _run_refresh(self, entity_id: str, tracked: _Tracked) -> bool:
        previous_state = tracked.state
        tracked.state = EntityState.REFRESHING
        self.refresh_calls[entity_id] = self.refresh_calls.get(entity_id, 0) + 1

        try:
            record = await asyncio.to_thread(self._refresh_fn, entity_id, tracked.place_id)
            applied = self.apply_update(
                entity_id, RestaurantStatus.from_record(record), source="refresh"
            )
        except Exception as e:
            handle_error(e, user_message="Couldn't refresh restaurant status")
            applied = False
        finally:
            if tracked.refresh_task is asyncio.current_task():
                tracked.refresh_task = None

        # A push may have made it FRESH while we waited
        if not applied and tracked.state == EntityState.REFRESHING:
            tracked.state = EntityState.STALE
        logger.debug(
            f"Refresh of {entity_id}: {previous_state.value} -> {tracked.state.value}"
        )
        return applied

    # =========================================================================
    # OBSERVATION
    # =========================================================================

    def add_listener(self, entity_id: str, listener: Listener) -> None:
        tracked = self._tracked(entity_id)
        if listener not in tracked.listeners:
            tracked.listeners.append(listener)

    def remove_listener(self, entity_id: str, listener: Listener) -> None:
        tracked = self._entities.get(entity_id)
        if tracked and listener in tracked.listeners:
            tracked.listeners.remove(listener)

    def forget(self, entity_id: str) -> bool:
        """
        Drop an entity nobody observes any more.

        Kept while it still has listeners or a refresh in flight. A later
        observe() starts again from UNKNOWN with a fresh load.
        """
        tracked = self._entities.get(entity_id)
        if tracked is None or tracked.listeners:
            return False
        if tracked.refresh_task is not None and not tracked.refresh_task.done():
            return False
        del self._entities[entity_id]
        self.refresh_calls.pop(entity_id, None)
        logger.debug(f"Stopped tracking {entity_id}")
        return True

    async def observe(self, entity_id: str, place_id: Optional[str] = None) -> StatusObservation:
        """
        Load, subscribe to pushes and start the periodic staleness check.

        Close the returned observation (or use it as an async context
        manager) to stop both.
        """
        observation = StatusObservation(self, entity_id)
        await self.load(entity_id, place_id)

        if self.push_source is not None:
            observation._unsubscribe = await self.push_source.subscribe(
                entity_id, lambda record: self.handle_push(entity_id, record)
            )
        observation._task = asyncio.ensure_future(self._check_loop(entity_id))
        return observation

    async def _check_loop(self, entity_id: str) -> None:
        while True:
            try:
                await self.check_staleness(entity_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Staleness check failed for {entity_id}: {e}")
            await self._sleep(self.check_interval)


_CLOSED = object()


class StatusObservation:
    """Handle for one observed entity; stops checks and pushes on close."""

    def __init__(self, reconciler: StatusReconciler, entity_id: str):
        self.reconciler = reconciler
        self.entity_id = entity_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = None
        self._listeners: List[Listener] = []
        self.closed = False
        self.add_listener(self._enqueue)

    def _enqueue(self, entity_id: str, status: RestaurantStatus) -> None:
        self._queue.put_nowait(status)

    @property
    def status(self) -> Optional[RestaurantStatus]:
        return self.reconciler.get_status(self.entity_id)

    @property
    def state(self) -> EntityState:
        return self.reconciler.get_state(self.entity_id)

    async def refresh(self) -> bool:
        return await self.reconciler.refresh(self.entity_id)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)
        self.reconciler.add_listener(self.entity_id, listener)

    async def updates(self) -> AsyncIterator[RestaurantStatus]:
        """Yield each applied status until the observation closes."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._unsubscribe is not None:
            await self._unsubscribe()
        for listener in self._listeners:
            self.reconciler.remove_listener(self.entity_id, listener)
        self.reconciler.forget(self.entity_id)
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> StatusObservation:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
