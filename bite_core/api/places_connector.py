"""
Places / Operating Status Provider Connectors
Supports Google Places details and a mock for offline use
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .base_connector import BaseProviderConnector
from bite_core.errors import ProviderUnavailable
from bite_core.models import StatusKind

DETAIL_FIELDS = "opening_hours,current_opening_hours,business_status,utc_offset_minutes"

BUSINESS_STATUS_MAP = {
    "OPERATIONAL": StatusKind.OPERATIONAL,
    "CLOSED_TEMPORARILY": StatusKind.CLOSED_TEMPORARILY,
    "CLOSED_PERMANENTLY": StatusKind.CLOSED_PERMANENTLY,
}

# Places status values that mean "try again later"
_RETRYABLE_PLACES_STATUS = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class PlacesConnector(BaseProviderConnector):
    """Base connector for place detail sources"""

    group = "places"

    def fetch_status(self, place_id: str) -> Dict[str, Any]:
        """Return status columns (is_open_now, status, hours, opening_hours)"""
        raise NotImplementedError


class GooglePlacesStatusConnector(PlacesConnector):
    """
    Connector for Google Places API (details endpoint)
    API key travels as a query parameter, not a header
    """

    def _set_auth_header(self):
        pass

    def validate_response(self, payload: Any) -> bool:
        return isinstance(payload, dict) and "status" in payload

    def _places_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.api_key:
            raise ProviderUnavailable(
                "Google Maps API key not configured",
                provider=self.name,
                retryable=False,
            )
        payload = self._make_request(endpoint, params={**params, "key": self.config.api_key})

        status = payload.get("status")
        if status in ("OK", "ZERO_RESULTS"):
            return payload
        raise ProviderUnavailable(
            f"{self.name} responded {status}: {payload.get('error_message', '')}".strip(),
            provider=self.name,
            status_code=429 if status == "OVER_QUERY_LIMIT" else None,
            retryable=status in _RETRYABLE_PLACES_STATUS,
        )

    def find_place_id(self, restaurant: Dict[str, Any]) -> Optional[str]:
        """Resolve a place id from name + coordinates"""
        payload = self._places_request(
            "place/findplacefromtext/json",
            {
                "input": restaurant.get("name", ""),
                "inputtype": "textquery",
                "fields": "place_id",
                "locationbias": f"point:{restaurant['latitude']},{restaurant['longitude']}",
            },
        )
        candidates = payload.get("candidates") or []
        return candidates[0].get("place_id") if candidates else None

    def fetch_status(self, place_id: str) -> Dict[str, Any]:
        payload = self._places_request(
            "place/details/json",
            {"place_id": place_id, "fields": DETAIL_FIELDS},
        )
        return parse_place_details(payload.get("result") or {})

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        place_id = restaurant.get("google_place_id") or restaurant.get("place_id")
        if not place_id:
            place_id = self.find_place_id(restaurant)
        if not place_id:
            return {"place_id": None}
        data = self.fetch_status(place_id)
        data["place_id"] = place_id
        return data


def parse_place_details(result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a place details result onto restaurant status columns

    Current hours win over regular hours. Only columns the result actually
    covers are returned, so a sparse result never blanks stored values.
    """
    fields: Dict[str, Any] = {}

    if result.get("business_status"):
        fields["status"] = BUSINESS_STATUS_MAP.get(
            result["business_status"], StatusKind.UNKNOWN
        ).value

    hours_block = result.get("current_opening_hours") or result.get("opening_hours")
    if hours_block:
        fields["is_open_now"] = bool(hours_block.get("open_now", False))
        weekday_text = hours_block.get("weekday_text")
        if weekday_text:
            fields["hours"] = {
                "weekday_text": weekday_text,
                "periods": hours_block.get("periods") or [],
            }
            fields["opening_hours"] = "\n".join(weekday_text)

    # Popularity needs the newer Places API; not available here
    fields["estimated_wait_minutes"] = None
    fields["current_popularity"] = None
    return fields


class MockPlacesConnector(PlacesConnector):
    """Mock connector: open during 11:00-22:00 UTC, always operational"""

    def __init__(self, config, clock=None):
        super().__init__(config)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _set_auth_header(self):
        pass

    def fetch_status(self, place_id: str) -> Dict[str, Any]:
        hour = self._clock().hour
        weekday_text = [f"{day}: 11:00 AM - 10:00 PM" for day in (
            "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"
        )]
        return {
            "is_open_now": 11 <= hour < 22,
            "status": StatusKind.OPERATIONAL.value,
            "hours": {"weekday_text": weekday_text},
            "opening_hours": "\n".join(weekday_text),
        }

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        place_id = restaurant.get("google_place_id") or f"mock-{restaurant.get('id')}"
        data = self.fetch_status(place_id)
        data["place_id"] = place_id
        return data
