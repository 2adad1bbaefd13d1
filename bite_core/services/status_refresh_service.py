# =============================================================================
# bite_core/services/status_refresh_service.py
# Backend-side restaurant status refresh
# =============================================================================
"""
StatusRefreshService - stamps a restaurant row with its current status.

The server-side counterpart of ``BackendClient.invoke_status_refresh``:
look up place details when a place id is known, write the status columns
plus ``status_last_checked`` and return the updated row. A provider failure
still writes the timestamp (partial update).
"""

from __future__ import annotations
from typing import Any, Dict, Optional

from bite_core.errors import ProviderUnavailable
from bite_core.utils.timing import Clock, from_epoch, system_clock
from .base_service import BaseService


class StatusRefreshService(BaseService):
    """
    Blocking; pass ``service.refresh`` as a StatusReconciler refresh_fn.

    Usage:
        service = StatusRefreshService(backend, registry.get_connector("places"))
        row = service.refresh("r-1", place_id="ChIJ...")
    """

    def __init__(self, backend, places_connector=None, clock: Clock = system_clock):
        super().__init__()
        self.backend = backend
        self.places = places_connector
        self._clock = clock

    def status_fields(self, place_id: Optional[str]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if place_id and self.places is not None:
            try:
                fields.update(self.places.fetch_status(place_id))
            except ProviderUnavailable as e:
                self.logger.warning(f"Place lookup failed for {place_id}, partial update: {e.message}")
        fields["status_last_checked"] = from_epoch(self._clock()).isoformat()
        return fields

    def refresh(self, restaurant_id: str, place_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Refresh one restaurant's status columns.

        Returns:
            The updated backend row

        Raises:
            NotFound: if the restaurant does not exist after the update
        """
        fields = self.status_fields(place_id)
        self.backend.update_restaurant(restaurant_id, fields)
        self.logger.debug(f"Status refresh for {restaurant_id} wrote {sorted(fields)}")
        return self.backend.fetch_restaurant_status(restaurant_id)
