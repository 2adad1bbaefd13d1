"""
Provider Configuration Manager
Centralized management of provider configurations and connector instances
"""
from typing import Dict, Any, List, Optional, Type
import logging

from .base_connector import BaseProviderConnector, ProviderConfig
from .reviews_connector import YelpReviewsConnector, MockReviewsConnector
from .reservation_connector import OpenTableConnector, MockReservationConnector
from .places_connector import GooglePlacesStatusConnector, MockPlacesConnector
from bite_core.config import Settings, ProviderSettings

logger = logging.getLogger(__name__)

# Groups the enrichment pipeline merges; "places" feeds the status refresher
ENRICHMENT_GROUPS = ("reviews", "reservations")


class ProviderRegistry:
    """
    Builds provider connectors from Settings

    A provider with no API key is either replaced by its mock connector
    (use_mocks=True) or reported as unavailable.

    Usage:
        registry = ProviderRegistry(settings)
        connectors = registry.enrichment_connectors()
        places = registry.get_connector("places")
    """

    # Registry of available connectors
    CONNECTORS: Dict[str, Dict[str, Type[BaseProviderConnector]]] = {
        "reviews": {
            "mock": MockReviewsConnector,
            "yelp": YelpReviewsConnector,
        },
        "reservations": {
            "mock": MockReservationConnector,
            "opentable": OpenTableConnector,
        },
        "places": {
            "mock": MockPlacesConnector,
            "google": GooglePlacesStatusConnector,
        },
    }

    DEFAULT_PROVIDERS = {
        "reviews": "yelp",
        "reservations": "opentable",
        "places": "google",
    }

    def __init__(self, settings: Settings, use_mocks: bool = False):
        self.settings = settings
        self.use_mocks = use_mocks
        self._connectors: Dict[str, BaseProviderConnector] = {}

    def _provider_settings(self, group: str) -> ProviderSettings:
        provider_settings = self.settings.providers.get(group)
        if provider_settings is None:
            raise ValueError(f"Unknown provider group: {group}")
        return provider_settings

    def _build_config(self, group: str, provider: str, provider_settings: ProviderSettings) -> ProviderConfig:
        """Build ProviderConfig from stored settings"""
        return ProviderConfig(
            provider_name=f"{group}_{provider}",
            base_url=provider_settings.base_url,
            api_key=provider_settings.api_key,
            timeout=provider_settings.timeout or self.settings.provider_timeout,
        )

    def is_available(self, group: str) -> bool:
        """True when a connector can be built for this group"""
        provider_settings = self._provider_settings(group)
        if not provider_settings.enabled:
            return False
        return bool(provider_settings.api_key) or self.use_mocks

    def get_connector(self, group: str, provider: Optional[str] = None) -> Optional[BaseProviderConnector]:
        """
        Get (and memoize) the connector for a provider group

        Args:
            group: 'reviews', 'reservations' or 'places'
            provider: Connector name; defaults to the real provider, or
                'mock' when no API key is configured and mocks are allowed

        Returns:
            Connector instance, or None if the group is unavailable
        """
        registry = self.CONNECTORS.get(group)
        if not registry:
            raise ValueError(f"Unknown provider group: {group}")

        provider_settings = self._provider_settings(group)
        if provider is None:
            if not self.is_available(group):
                logger.info(f"Provider group '{group}' unavailable (disabled or no API key)")
                return None
            provider = self.DEFAULT_PROVIDERS[group] if provider_settings.api_key else "mock"

        key = f"{group}:{provider}"
        if key not in self._connectors:
            connector_class = registry.get(provider)
            if not connector_class:
                raise ValueError(f"Unknown {group} connector: {provider}")
            self._connectors[key] = connector_class(
                self._build_config(group, provider, provider_settings)
            )
        return self._connectors[key]

    def enrichment_connectors(self) -> Dict[str, Optional[BaseProviderConnector]]:
        """Connector per enrichment group; None marks an unavailable group"""
        return {group: self.get_connector(group) for group in ENRICHMENT_GROUPS}

    def get_available_providers(self, group: str) -> List[str]:
        registry = self.CONNECTORS.get(group)
        if not registry:
            return []
        return list(registry.keys())

    def test_all_connections(self) -> Dict[str, Dict[str, Any]]:
        """
        Test connections for all configured provider groups

        Returns:
            Dict with test results for each group
        """
        results = {}
        for group in self.CONNECTORS:
            connector = self.get_connector(group)
            if connector is None:
                results[group] = {"status": "unavailable", "message": "Not configured"}
                continue
            results[group] = connector.test_connection()
        return results

    def close(self) -> None:
        for connector in self._connectors.values():
            connector.close()
        self._connectors.clear()
