# =============================================================================
# bite_core/offline/sync_manager.py
# Outbox Push and Backend Hydration
# =============================================================================
"""
SyncManager - Pushes offline-created orders and refreshes the local cache.

Triggers:
- on_authenticated(user_id): a user signed in
- on_connectivity_change(online): network came back (or went away)
- on_foreground(): the app returned to the foreground

A pass only runs while online with a user signed in; orders queued while
signed out wait for the next login.

Passes are serialized and every order is re-checked against the store right
before it is pushed, so overlapping triggers never push the same order twice.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from bite_core.errors import error_boundary, handle_error, SyncConflict
from bite_core.models import Collection, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    total_synced: int = 0
    last_result: Optional[SyncResult] = None


class SyncManager:
    """
    Outbox push + hydration between the LocalStore and the backend.

    Usage:
        manager = SyncManager(store, backend, connection=connection_manager)
        manager.bind_loop(asyncio.get_running_loop())
        await manager.on_authenticated(user_id)
    """

    def __init__(
        self,
        store,
        backend,
        connection=None,
        hydrate_restaurant_limit: int = 100,
    ):
        self.store = store
        self.backend = backend
        self.connection = connection
        self.hydrate_restaurant_limit = hydrate_restaurant_limit
        self.user_id: Optional[str] = None

        self._online = True
        self._lock = asyncio.Lock()
        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._hydration_callbacks: List[Callable[[Collection], None]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set = set()

        if connection is not None:
            connection.register_callback(self._on_connection_state)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        if self.connection is not None:
            return self.connection.is_online
        return self._online

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Event loop that connection-monitor callbacks schedule passes on."""
        self._loop = loop

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def on_authenticated(self, user_id: Optional[str]) -> SyncResult:
        self.user_id = user_id
        if user_id is None:
            return SyncResult(ran=False)
        logger.info(f"User {user_id} authenticated, syncing")
        return await self.sync_now()

    async def on_connectivity_change(self, online: bool) -> SyncResult:
        self._online = online
        if not online:
            logger.info("Went offline, outbox push paused")
            return SyncResult(ran=False)
        logger.info("Connection restored, triggering sync")
        return await self.sync_now()

    async def on_foreground(self) -> SyncResult:
        if not (self.is_online and self.is_authenticated):
            return SyncResult(ran=False)
        return await self.sync_now()

    def _on_connection_state(self, state) -> None:
        """ConnectionManager callback; may run on the monitor thread."""
        if self._loop is None or self._loop.is_closed():
            logger.debug("No event loop bound, ignoring connection change")
            return

        online = state.status.value == "online"
        coro = self.on_connectivity_change(online)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            task = self._loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            asyncio.run_coroutine_threadsafe(coro, self._loop)

    # =========================================================================
    # SYNC PASS
    # =========================================================================

    async def sync_now(self) -> SyncResult:
        """
        Push every unsynced order, then hydrate the cache.

        Returns:
            SyncResult (ran=False when offline or signed out)
        """
        if not self.is_online:
            logger.debug("Cannot sync: offline")
            return SyncResult(ran=False)
        if not self.is_authenticated:
            logger.debug("Cannot sync: no user signed in")
            return SyncResult(ran=False)

        async with self._lock:
            self._state.is_syncing = True
            self._state.last_sync = datetime.now()
            self._notify_callbacks()
            try:
                result = await self._push_outbox()
                if self.is_authenticated and self.is_online:
                    result.hydrated = await self.hydrate()
            finally:
                self._state.is_syncing = False

            self._state.last_result = result
            self._state.total_synced += result.pushed
            self._state.pending_count = len(await asyncio.to_thread(self.store.get_unsynced_orders))
            if result.ok:
                self._state.last_sync_success = datetime.now()
            self._notify_callbacks()

        logger.info(
            f"Sync pass: {result.pushed} pushed, {result.failed} failed, "
            f"{result.skipped} skipped, {result.hydrated} hydrated"
        )
        return result

    async def _push_outbox(self) -> SyncResult:
        result = SyncResult()
        orders = await asyncio.to_thread(self.store.get_unsynced_orders)

        for order in orders:
            order_id = str(order["id"])

            # Re-check: another pass may have pushed it since the scan
            if await asyncio.to_thread(self.store.is_order_synced, order_id):
                result.skipped += 1
                continue

            try:
                await asyncio.to_thread(self.backend.push_order, order)
            except Exception as e:
                result.failed += 1
                logger.warning(f"Push failed for order {order_id}, kept in outbox: {e}")
                continue

            if not await asyncio.to_thread(self.store.mark_order_synced, order_id):
                conflict = SyncConflict(f"Order {order_id} was already synced", order_id=order_id)
                logger.info(f"[{conflict.code}] {conflict.message}")
            result.pushed += 1

        return result

    # =========================================================================
    # HYDRATION
    # =========================================================================

    async def hydrate(self) -> int:
        """Refresh restaurants, orders and liked restaurants from the backend."""
        counts = [
            await self.hydrate_restaurants(),
            await self.hydrate_orders(),
            await self.hydrate_liked(),
        ]
        return sum(counts)

    @error_boundary(default_return=0)
    async def hydrate_restaurants(self) -> int:
        rows = await asyncio.to_thread(
            self.backend.fetch_restaurants, self.hydrate_restaurant_limit
        )
        await asyncio.to_thread(self.store.put_many, Collection.RESTAURANTS, rows)
        self._notify_hydrated(Collection.RESTAURANTS)
        return len(rows)

    @error_boundary(default_return=0)
    async def hydrate_orders(self) -> int:
        if self.user_id is None:
            return 0
        rows = await asyncio.to_thread(self.backend.fetch_user_orders, self.user_id)
        for row in rows:
            await asyncio.to_thread(self.store.put_order, row, True)
        self._notify_hydrated(Collection.ORDERS)
        return len(rows)

    @error_boundary(default_return=0)
    async def hydrate_liked(self) -> int:
        if self.user_id is None:
            return 0
        rows = await asyncio.to_thread(self.backend.fetch_liked_restaurants, self.user_id)
        await asyncio.to_thread(self.store.put_many, Collection.LIKED_RESTAURANTS, rows)
        self._notify_hydrated(Collection.LIKED_RESTAURANTS)
        return len(rows)

    # =========================================================================
    # OFFLINE WRITES
    # =========================================================================

    async def create_order_offline(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Store an order with synced=False for the next sync pass."""
        await asyncio.to_thread(self.store.put_order, order, False)
        logger.info(f"Order {order.get('id')} queued in outbox")
        self._state.pending_count += 1
        return order

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                handle_error(e, show_user_message=False)

    def register_hydration_callback(self, callback: Callable[[Collection], None]) -> None:
        """Called with each collection a hydration pass rewrote."""
        if callback not in self._hydration_callbacks:
            self._hydration_callbacks.append(callback)

    def _notify_hydrated(self, collection: Collection) -> None:
        for callback in list(self._hydration_callbacks):
            try:
                callback(collection)
            except Exception as e:
                handle_error(e, show_user_message=False)

    async def close(self) -> None:
        if self.connection is not None:
            self.connection.unregister_callback(self._on_connection_state)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
