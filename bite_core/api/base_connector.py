"""
Base Provider Connector Class for Restaurant Enrichment
Provides abstract interface for fetching best-effort data from third-party providers
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass

import requests

from bite_core.errors import ProviderUnavailable

# Status codes worth retrying on a later cycle; anything else in 4xx is permanent
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass
class ProviderConfig:
    """Configuration for provider connection"""
    provider_name: str
    base_url: str
    api_key: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    timeout: float = 10.0
    additional_params: Optional[Dict[str, Any]] = None


class BaseProviderConnector(ABC):
    """Abstract base class for all enrichment provider connectors"""

    #: Namespace of the fields this provider contributes (e.g. "reviews")
    group: str = ""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.session = requests.Session()

        if config.headers:
            self.session.headers.update(config.headers)

        if config.api_key:
            self._set_auth_header()

    @property
    def name(self) -> str:
        return self.config.provider_name

    @abstractmethod
    def _set_auth_header(self):
        """Set authentication header based on provider requirements"""
        pass

    @abstractmethod
    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch provider data for one restaurant

        Args:
            restaurant: Base restaurant record (id, name, address, latitude, longitude)

        Returns:
            Dict with this provider's namespaced fields

        Raises:
            ProviderUnavailable: on timeout, HTTP error or malformed response
        """
        pass

    def validate_response(self, payload: Any) -> bool:
        """Check that a decoded response has the expected shape"""
        return isinstance(payload, dict)

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict] = None,
        data: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """
        Make HTTP request and decode the JSON body

        Args:
            endpoint: API endpoint (appended to base_url)
            method: HTTP method (GET, POST, etc.)
            params: Query parameters
            data: Request body data

        Returns:
            Decoded JSON object
        """
        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                timeout=self.config.timeout
            )
            response.raise_for_status()
            payload = response.json()

        except requests.exceptions.JSONDecodeError as e:
            raise ProviderUnavailable(
                f"{self.name} returned a non-JSON body",
                provider=self.name,
                retryable=False,
            ) from e
        except requests.exceptions.Timeout as e:
            raise ProviderUnavailable(
                f"{self.name} timed out after {self.config.timeout}s",
                provider=self.name,
                retryable=True,
            ) from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ProviderUnavailable(
                f"{self.name} returned HTTP {status}",
                provider=self.name,
                status_code=status,
                retryable=status is None or status in RETRYABLE_STATUS_CODES,
            ) from e
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailable(
                f"Request to {self.name} failed: {e}",
                provider=self.name,
                retryable=True,
            ) from e

        if not self.validate_response(payload):
            raise ProviderUnavailable(
                f"{self.name} returned an unexpected payload",
                provider=self.name,
                retryable=False,
            )
        return payload

    def close(self) -> None:
        self.session.close()

    def test_connection(self) -> Dict[str, Any]:
        """
        Test provider connection with a well-known sample restaurant

        Returns:
            Dict with status and message
        """
        sample = {
            "id": "connection-test",
            "name": "Test Kitchen",
            "latitude": 40.7128,
            "longitude": -74.0060,
        }
        try:
            data = self.fetch(sample)
            return {
                "status": "success",
                "message": f"Successfully connected to {self.name}",
                "fields": sorted(data.keys()),
            }
        except ProviderUnavailable as e:
            return {
                "status": "error",
                "message": f"Connection failed: {e.message}",
                "retryable": e.retryable,
            }
