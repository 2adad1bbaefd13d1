# =============================================================================
# bite_core/data/realtime.py
# Push subscriptions for restaurant status changes
# =============================================================================
"""
Push sources deliver the new restaurant row whenever the backend record
changes. The reconciler only needs ``subscribe(entity_id, callback)``
returning an async unsubscribe function.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List
import logging

from bite_core.config import Settings
from bite_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PushCallback = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], Awaitable[None]]


class RealtimeStatusSource:
    """
    Supabase Realtime subscription to UPDATE events on one restaurant row.

    Usage:
        source = await RealtimeStatusSource.connect(settings)
        unsubscribe = await source.subscribe("r-1", on_record)
        ...
        await unsubscribe()
    """

    def __init__(self, async_client):
        self.client = async_client

    @classmethod
    async def connect(cls, settings: Settings) -> RealtimeStatusSource:
        if not settings.backend_configured:
            raise ConfigurationError(
                "Supabase credentials not configured for realtime",
                config_key="supabase",
            )
        from supabase import acreate_client

        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls(client)

    async def subscribe(self, entity_id: str, callback: PushCallback) -> Unsubscribe:
        def _on_change(payload: Dict[str, Any]) -> None:
            data = payload.get("data", payload)
            record = data.get("record") or data.get("new")
            if record:
                callback(record)

        channel = self.client.channel(f"restaurant-status-{entity_id}")
        channel.on_postgres_changes(
            "UPDATE",
            schema="public",
            table="restaurants",
            filter=f"id=eq.{entity_id}",
            callback=_on_change,
        )
        await channel.subscribe()
        logger.debug(f"Subscribed to status changes for {entity_id}")

        async def unsubscribe() -> None:
            await self.client.remove_channel(channel)
            logger.debug(f"Unsubscribed from status changes for {entity_id}")

        return unsubscribe


class LocalPushSource:
    """
    In-process push source.

    Used when the status refresher runs in the same process as the
    reconciler, and as a test double.
    """

    def __init__(self):
        self._callbacks: Dict[str, List[PushCallback]] = defaultdict(list)

    async def subscribe(self, entity_id: str, callback: PushCallback) -> Unsubscribe:
        self._callbacks[entity_id].append(callback)

        async def unsubscribe() -> None:
            if callback in self._callbacks.get(entity_id, []):
                self._callbacks[entity_id].remove(callback)

        return unsubscribe

    def publish(self, entity_id: str, record: Dict[str, Any]) -> int:
        """Deliver a record to every subscriber; returns how many received it."""
        callbacks = list(self._callbacks.get(entity_id, []))
        for callback in callbacks:
            try:
                callback(record)
            except Exception as e:
                logger.error(f"Error in push callback for {entity_id}: {e}")
        return len(callbacks)

    def subscriber_count(self, entity_id: str) -> int:
        return len(self._callbacks.get(entity_id, []))
