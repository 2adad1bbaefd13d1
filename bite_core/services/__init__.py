# =============================================================================
# bite_core/services/__init__.py
# Service Layer for SwipeNBite Core
# =============================================================================
"""
Service Layer for SwipeNBite Core

Usage Example:
-------------
    from bite_core.services import EnrichmentService, StaleSweepJob

    enrichment = EnrichmentService(registry.enrichment_connectors(), backend=backend)
    result = await enrichment.enrich(restaurant)

    job = StaleSweepJob(backend, enrichment)
    report = await job.run()
"""

from .base_service import BaseService, ServiceResult
from .enrichment_service import EnrichmentService
from .sweep_service import StaleSweepJob
from .status_refresh_service import StatusRefreshService
from .preference_service import (
    PreferenceService,
    FavoritesSummary,
    InferredPreferences,
    aggregate_favorites,
    FAVORITES_KIND,
    INFERRED_KIND,
)

__all__ = [
    "BaseService",
    "ServiceResult",
    "EnrichmentService",
    "StaleSweepJob",
    "StatusRefreshService",
    "PreferenceService",
    "FavoritesSummary",
    "InferredPreferences",
    "aggregate_favorites",
    "FAVORITES_KIND",
    "INFERRED_KIND",
]
