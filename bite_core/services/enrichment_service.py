# =============================================================================
# bite_core/services/enrichment_service.py
# Multi-provider restaurant enrichment
# =============================================================================
"""
EnrichmentService - merges best-effort data from every enrichment provider.

Each provider call is isolated: a timeout, HTTP error or malformed payload
leaves that provider's group absent and records why. The pipeline itself
never raises for provider trouble; ``refresh_restaurant`` (the sweep's
persist step) raises only when every provider failed.
"""

from __future__ import annotations
import asyncio
import random
import time
from typing import Any, Dict, Optional

from bite_core.errors import ProviderUnavailable
from bite_core.models import (
    EnrichedRestaurant,
    EnrichmentResult,
    ProviderOutcome,
    ProviderResult,
)
from bite_core.utils.timing import Clock, Sleeper, from_epoch, jitter, real_sleep, system_clock
from .base_service import BaseService


def has_coordinates(restaurant: Dict[str, Any]) -> bool:
    return restaurant.get("latitude") is not None and restaurant.get("longitude") is not None


class EnrichmentService(BaseService):
    """
    Usage:
        service = EnrichmentService(registry.enrichment_connectors(), backend=backend)
        result = await service.enrich(restaurant)
        result.restaurant.reviews        # None when the reviews provider failed
        result.availability              # {"reviews": False, "reservations": True}
    """

    def __init__(
        self,
        connectors: Dict[str, Any],
        backend=None,
        clock: Clock = system_clock,
        sleep: Sleeper = real_sleep,
        rng: Optional[random.Random] = None,
        jitter_max: float = 1.0,
        provider_timeout: float = 10.0,
    ):
        """
        Args:
            connectors: group name -> connector, or None for an unavailable group
            backend: BackendClient used by refresh_restaurant
            clock: Epoch seconds source for last_synced_at
            sleep: Awaitable delay used for the pre-request jitter
            rng: Random source for the jitter
            jitter_max: Upper bound of the jitter in seconds
            provider_timeout: Per-provider call timeout in seconds
        """
        super().__init__()
        self.connectors = dict(connectors)
        self.backend = backend
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.jitter_max = jitter_max
        self.provider_timeout = provider_timeout

    async def enrich(self, restaurant: Dict[str, Any], enabled: bool = True) -> EnrichmentResult:
        """
        Enrich one restaurant from every provider.

        Disabled enrichment or a restaurant without coordinates returns the
        base entity unchanged, with no provider calls.
        """
        if not enabled or not has_coordinates(restaurant):
            return EnrichmentResult(restaurant=EnrichedRestaurant(base=dict(restaurant)))

        # Spread bursts of simultaneous card loads across providers' rate windows
        await self._sleep(jitter(self._rng, 0.0, self.jitter_max))
        return await self._gather(restaurant)

    async def _gather(self, restaurant: Dict[str, Any]) -> EnrichmentResult:
        names = list(self.connectors)
        results = await asyncio.gather(
            *(self._call(name, self.connectors[name], restaurant) for name in names)
        )

        enriched = EnrichedRestaurant(base=dict(restaurant))
        for name, result in zip(names, results):
            enriched.sources[name] = result
            enriched.groups[name] = result.data if result.ok else None

        attempted = [r for r in results if r.outcome != ProviderOutcome.UNAVAILABLE]
        error = None
        if attempted and not any(r.ok for r in attempted):
            error = "; ".join(f"{r.provider}: {r.error}" for r in attempted)
            self.logger.warning(f"All providers failed for {restaurant.get('id')}: {error}")

        return EnrichmentResult(restaurant=enriched, error=error)

    async def _call(self, name: str, connector, restaurant: Dict[str, Any]) -> ProviderResult:
        if connector is None:
            return ProviderResult(
                provider=name,
                outcome=ProviderOutcome.UNAVAILABLE,
                error="Provider not configured",
                retryable=False,
            )

        started = time.monotonic()
        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(connector.fetch, restaurant),
                timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            return self._failure(name, started, f"Timed out after {self.provider_timeout}s", True)
        except ProviderUnavailable as e:
            outcome = ProviderOutcome.RATE_LIMITED if e.rate_limited else ProviderOutcome.FAILED
            return self._failure(name, started, e.message, e.retryable, outcome)
        except Exception as e:
            return self._failure(name, started, f"Unexpected error: {e}", False)

        if not isinstance(data, dict):
            return self._failure(name, started, "Malformed provider response", False)

        return ProviderResult(
            provider=name,
            outcome=ProviderOutcome.SUCCESS,
            data=data,
            elapsed_seconds=time.monotonic() - started,
        )

    def _failure(
        self,
        name: str,
        started: float,
        error: str,
        retryable: bool,
        outcome: ProviderOutcome = ProviderOutcome.FAILED,
    ) -> ProviderResult:
        self.logger.warning(f"Provider {name} {outcome.value}: {error}")
        return ProviderResult(
            provider=name,
            outcome=outcome,
            error=error,
            retryable=retryable,
            elapsed_seconds=time.monotonic() - started,
        )

    # =========================================================================
    # BACKEND PERSISTENCE (stale sweep)
    # =========================================================================

    def backend_fields(self, enriched: EnrichedRestaurant) -> Dict[str, Any]:
        """Restaurant columns to write; groups that failed are left untouched."""
        fields: Dict[str, Any] = {"last_synced_at": from_epoch(self._clock()).isoformat()}

        reviews = enriched.group("reviews")
        if reviews is not None:
            fields.update({
                "yelp_id": reviews.get("provider_id"),
                "yelp_url": reviews.get("url"),
                "yelp_rating": reviews.get("rating"),
                "review_count": reviews.get("review_count"),
            })
            if reviews.get("photos"):
                fields["photos"] = reviews["photos"][:10]

        reservations = enriched.group("reservations")
        if reservations is not None:
            fields.update({
                "reservation_url": reservations.get("reservation_url"),
                "opentable_available": bool(reservations.get("available", False)),
            })
        return fields

    async def refresh_restaurant(self, record: Dict[str, Any]) -> EnrichmentResult:
        """
        Enrich a backend record without jitter and persist the merged fields.

        Raises:
            ProviderUnavailable: if the record has no coordinates or every
                provider failed (last_synced_at is not advanced)
        """
        if self.backend is None:
            raise RuntimeError("refresh_restaurant needs a backend client")

        restaurant_id = record.get("id")
        if not has_coordinates(record):
            raise ProviderUnavailable(
                f"Restaurant {restaurant_id} has no coordinates",
                provider="enrichment",
                retryable=False,
            )

        result = await self._gather(record)
        if result.error:
            raise ProviderUnavailable(
                f"All providers failed: {result.error}",
                provider="enrichment",
                retryable=any(r.retryable for r in result.restaurant.sources.values()),
            )

        fields = self.backend_fields(result.restaurant)
        await asyncio.to_thread(self.backend.update_restaurant, restaurant_id, fields)
        self.logger.info(f"Refreshed restaurant {restaurant_id} ({', '.join(fields)})")
        return result
