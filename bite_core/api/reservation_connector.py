"""
Reservation Availability Provider Connectors
Supports OpenTable partner listings and a mock for offline use
"""
import re
from typing import Any, Dict
from urllib.parse import quote

from .base_connector import BaseProviderConnector
from bite_core.errors import ProviderUnavailable

OPENTABLE_SEARCH_URL = "https://www.opentable.com/s?term={term}"


def fallback_reservation_url(name: str) -> str:
    """Generic search link used when no listing matches"""
    slug = re.sub(r"[^\w\s]", "", name or "").strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    return OPENTABLE_SEARCH_URL.format(term=quote(slug))


class ReservationConnector(BaseProviderConnector):
    """Base connector for reservation sources"""

    group = "reservations"


class OpenTableConnector(ReservationConnector):
    """
    Connector for OpenTable partner listings API
    A restaurant without a listing yields available=False and a search URL
    """

    def _set_auth_header(self):
        self.session.headers.update({"Authorization": f"Bearer {self.config.api_key}"})

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.api_key:
            raise ProviderUnavailable(
                "OpenTable API key not configured",
                provider=self.name,
                retryable=False,
            )

        payload = self._make_request(
            endpoint="sync/listings",
            method="POST",
            data={
                "name": restaurant.get("name"),
                "latitude": restaurant["latitude"],
                "longitude": restaurant["longitude"],
            },
        )
        items = payload.get("items") or []
        if not items:
            return {
                "provider_id": None,
                "reservation_url": fallback_reservation_url(restaurant.get("name", "")),
                "available": False,
            }

        listing = items[0]
        listing_id = listing.get("id")
        return {
            "provider_id": listing_id,
            "reservation_url": listing.get("reserve_url") or f"https://www.opentable.com/r/{listing_id}",
            "available": bool(listing.get("is_available", False)),
        }


class MockReservationConnector(ReservationConnector):
    """Mock connector: every even-seeded restaurant takes reservations"""

    def _set_auth_header(self):
        pass

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        seed = sum(ord(c) for c in str(restaurant.get("id", "")))
        available = seed % 2 == 0
        return {
            "provider_id": f"mock-{restaurant.get('id')}" if available else None,
            "reservation_url": fallback_reservation_url(restaurant.get("name", "")),
            "available": available,
        }
