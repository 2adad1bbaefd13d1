"""
Enrichment Provider Module
Provides connectors for fetching restaurant data from third-party providers
"""

from .base_connector import BaseProviderConnector, ProviderConfig, RETRYABLE_STATUS_CODES
from .config_manager import ProviderRegistry, ENRICHMENT_GROUPS

from .reviews_connector import (
    ReviewsConnector,
    YelpReviewsConnector,
    MockReviewsConnector
)

from .reservation_connector import (
    ReservationConnector,
    OpenTableConnector,
    MockReservationConnector,
    fallback_reservation_url
)

from .places_connector import (
    PlacesConnector,
    GooglePlacesStatusConnector,
    MockPlacesConnector,
    parse_place_details
)

__all__ = [
    # Base classes
    "BaseProviderConnector",
    "ProviderConfig",
    "RETRYABLE_STATUS_CODES",
    "ProviderRegistry",
    "ENRICHMENT_GROUPS",

    # Reviews connectors
    "ReviewsConnector",
    "YelpReviewsConnector",
    "MockReviewsConnector",

    # Reservation connectors
    "ReservationConnector",
    "OpenTableConnector",
    "MockReservationConnector",
    "fallback_reservation_url",

    # Places connectors
    "PlacesConnector",
    "GooglePlacesStatusConnector",
    "MockPlacesConnector",
    "parse_place_details",
]
