# =============================================================================
# bite_core/data/supabase_client.py
# Supabase backend access for SwipeNBite Core
# Handles client creation and the record queries the cache layer needs
# =============================================================================

from __future__ import annotations
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from bite_core.config import Settings
from bite_core.errors import ConfigurationError, NotFound, ProviderUnavailable

logger = logging.getLogger(__name__)

RESTAURANTS_TABLE = "restaurants"
ORDERS_TABLE = "orders"
LIKED_TABLE = "liked_restaurants"
PROFILES_TABLE = "profiles"

STATUS_COLUMNS = (
    "id, is_open_now, status, hours, opening_hours, "
    "estimated_wait_minutes, current_popularity, status_last_checked"
)

STATUS_REFRESH_FUNCTION = "update-restaurant-status"


def get_supabase_client(settings: Settings):
    """
    Create a Supabase client from settings.

    Raises:
        ConfigurationError: if the url/key are missing
    """
    if not settings.backend_configured:
        raise ConfigurationError(
            "Supabase credentials not configured (SUPABASE_URL / SUPABASE_KEY)",
            config_key="supabase",
        )

    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_key)


class BackendClient:
    """
    Record queries and updates against the Supabase backend.

    All methods are blocking (supabase-py sync client); async callers run
    them through ``asyncio.to_thread``.
    """

    def __init__(self, client):
        """
        Args:
            client: A ``supabase.Client`` (or a compatible test double)
        """
        if client is None:
            raise ValueError("Supabase client cannot be None")
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendClient:
        return cls(get_supabase_client(settings))

    def _table(self, name: str):
        return self.client.table(name)

    # =========================================================================
    # RESTAURANTS
    # =========================================================================

    def fetch_restaurant(self, restaurant_id: str) -> Dict[str, Any]:
        """
        Fetch one restaurant row.

        Raises:
            NotFound: if no row has this id
        """
        response = (
            self._table(RESTAURANTS_TABLE)
            .select("*")
            .eq("id", restaurant_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            raise NotFound(
                f"Restaurant {restaurant_id} not found",
                collection=RESTAURANTS_TABLE,
                entity_id=restaurant_id,
            )
        return response.data[0]

    def fetch_restaurant_status(self, restaurant_id: str) -> Dict[str, Any]:
        """Fetch only the realtime status columns of one restaurant."""
        response = (
            self._table(RESTAURANTS_TABLE)
            .select(STATUS_COLUMNS)
            .eq("id", restaurant_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            raise NotFound(
                f"Restaurant {restaurant_id} not found",
                collection=RESTAURANTS_TABLE,
                entity_id=restaurant_id,
            )
        return response.data[0]

    def fetch_restaurants(self, limit: int = 100) -> List[Dict[str, Any]]:
        response = self._table(RESTAURANTS_TABLE).select("*").limit(limit).execute()
        return response.data or []

    def fetch_stale_restaurants(self, before: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Restaurants never synced or last synced before ``before``.

        Ordered by staleness (never-synced first, then oldest), then id.
        """
        response = (
            self._table(RESTAURANTS_TABLE)
            .select("id, name, latitude, longitude, address, place_id, last_synced_at")
            .or_(f"last_synced_at.is.null,last_synced_at.lt.{before.isoformat()}")
            .order("last_synced_at", desc=False, nullsfirst=True)
            .limit(limit)
            .execute()
        )
        rows = response.data or []
        # PostgREST only orders by one key here; break ties by id
        return sorted(
            rows,
            key=lambda r: (r.get("last_synced_at") is not None, r.get("last_synced_at") or "", str(r.get("id"))),
        )

    def update_restaurant(self, restaurant_id: str, fields: Dict[str, Any]) -> None:
        self._table(RESTAURANTS_TABLE).update(fields).eq("id", restaurant_id).execute()

    # =========================================================================
    # USER DATA
    # =========================================================================

    def push_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Push one offline-created order.

        Upsert on id, so a repeated push of the same order is harmless.
        """
        response = self._table(ORDERS_TABLE).upsert(order, on_conflict="id").execute()
        return response.data[0] if response.data else order

    def fetch_user_orders(
        self,
        user_id: str,
        since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        query = self._table(ORDERS_TABLE).select("*").eq("user_id", user_id)
        if since:
            query = query.gt("created_at", since.isoformat())
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    def fetch_liked_restaurants(self, user_id: str) -> List[Dict[str, Any]]:
        response = self._table(LIKED_TABLE).select("*").eq("user_id", user_id).execute()
        return response.data or []

    def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        response = (
            self._table(PROFILES_TABLE)
            .select("personalization_enabled")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    # =========================================================================
    # EDGE FUNCTIONS
    # =========================================================================

    def invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Invoke a backend function and decode its JSON response.

        Raises:
            ProviderUnavailable: if the invocation fails or the response
                is not a JSON object
        """
        try:
            response = self.client.functions.invoke(
                function_name,
                invoke_options={"body": body},
            )
        except Exception as e:
            status = getattr(e, "status", None)
            raise ProviderUnavailable(
                f"Function {function_name} failed: {e}",
                provider=function_name,
                status_code=status if isinstance(status, int) else None,
            ) from e

        data = response
        if isinstance(response, (bytes, bytearray, str)):
            try:
                data = json.loads(response)
            except ValueError as e:
                raise ProviderUnavailable(
                    f"Function {function_name} returned malformed JSON",
                    provider=function_name,
                ) from e
        if not isinstance(data, dict):
            raise ProviderUnavailable(
                f"Function {function_name} returned {type(data).__name__}",
                provider=function_name,
            )
        return data

    def invoke_status_refresh(
        self,
        restaurant_id: str,
        place_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Ask the backend to refresh one restaurant's status; returns the updated row."""
        data = self.invoke(
            STATUS_REFRESH_FUNCTION,
            {"restaurantId": restaurant_id, "placeId": place_id},
        )
        if not data.get("success", True) or "restaurant" not in data:
            raise ProviderUnavailable(
                data.get("error") or "Status refresh returned no restaurant",
                provider=STATUS_REFRESH_FUNCTION,
            )
        return data["restaurant"]
