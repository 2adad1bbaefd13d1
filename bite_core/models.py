# =============================================================================
# bite_core/models.py
# Domain types for the cache and reconciliation subsystem
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from bite_core.utils.timing import to_datetime


# =============================================================================
# LOCAL STORE RECORDS
# =============================================================================

class Collection(str, Enum):
    """Local store collections."""
    RESTAURANTS = "restaurants"
    ORDERS = "orders"
    PREFERENCES = "preferences"
    LIKED_RESTAURANTS = "liked_restaurants"


@dataclass
class CachedEntity:
    """A payload cached under one id in one collection."""
    id: str
    payload: Dict[str, Any]
    last_updated: float


@dataclass
class OrderRecord(CachedEntity):
    """Cached order with its outbox flag."""
    synced: bool = False


# =============================================================================
# RESTAURANT STATUS
# =============================================================================

class StatusKind(str, Enum):
    """Operational status of a restaurant."""
    OPERATIONAL = "operational"
    CLOSED_TEMPORARILY = "closed_temporarily"
    CLOSED_PERMANENTLY = "closed_permanently"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> StatusKind:
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class EntityState(str, Enum):
    """Reconciler view of one tracked entity."""
    UNKNOWN = "unknown"
    FRESH = "fresh"
    STALE = "stale"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class RestaurantStatus:
    """Freshest known operational status of one restaurant."""
    is_open_now: Optional[bool] = None
    status: StatusKind = StatusKind.UNKNOWN
    hours: Optional[Union[Dict[str, Any], str]] = None
    opening_hours: Optional[str] = None
    estimated_wait_minutes: Optional[float] = None
    popularity: Optional[float] = None
    last_checked: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> RestaurantStatus:
        """Build from a backend ``restaurants`` row or realtime payload."""
        return cls(
            is_open_now=record.get("is_open_now"),
            status=StatusKind.parse(record.get("status")),
            hours=record.get("hours"),
            opening_hours=record.get("opening_hours"),
            estimated_wait_minutes=record.get("estimated_wait_minutes"),
            popularity=record.get("current_popularity", record.get("popularity")),
            last_checked=to_datetime(record.get("status_last_checked", record.get("last_checked"))),
        )

    def is_newer_than(self, other: Optional[RestaurantStatus]) -> bool:
        """Newer-timestamp-wins: strictly newer ``last_checked`` only."""
        if other is None or other.last_checked is None:
            return True
        if self.last_checked is None:
            return False
        return self.last_checked > other.last_checked

    def age_seconds(self, now: datetime) -> Optional[float]:
        if self.last_checked is None:
            return None
        return (now - self.last_checked).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_open_now": self.is_open_now,
            "status": self.status.value,
            "hours": self.hours,
            "opening_hours": self.opening_hours,
            "estimated_wait_minutes": self.estimated_wait_minutes,
            "current_popularity": self.popularity,
            "status_last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }


# =============================================================================
# ENRICHMENT
# =============================================================================

class ProviderOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"


@dataclass
class ProviderResult:
    """What one provider contributed to an enrichment."""
    provider: str
    outcome: ProviderOutcome
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = True
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome == ProviderOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.ok,
            "outcome": self.outcome.value,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class EnrichedRestaurant:
    """
    A base restaurant plus one namespaced group per provider.

    A group is None when that provider's data is unknown (failed, skipped).
    An empty group means the provider answered and has nothing to offer.
    """
    base: Dict[str, Any]
    groups: Dict[str, Optional[Dict[str, Any]]] = field(default_factory=dict)
    sources: Dict[str, ProviderResult] = field(default_factory=dict)

    @property
    def id(self) -> Optional[str]:
        return self.base.get("id")

    def group(self, name: str) -> Optional[Dict[str, Any]]:
        return self.groups.get(name)

    def _field(self, group: str, key: str) -> Any:
        data = self.groups.get(group)
        return None if data is None else data.get(key)

    @property
    def reviews(self) -> Optional[List[Dict[str, Any]]]:
        return self._field("reviews", "reviews")

    @property
    def review_count(self) -> Optional[int]:
        return self._field("reviews", "review_count")

    @property
    def reservation_url(self) -> Optional[str]:
        return self._field("reservations", "reservation_url")

    @property
    def reservation_available(self) -> Optional[bool]:
        return self._field("reservations", "available")

    @property
    def availability(self) -> Dict[str, bool]:
        return {name: result.ok for name, result in self.sources.items()}

    def to_dict(self) -> Dict[str, Any]:
        merged = dict(self.base)
        for name, data in self.groups.items():
            merged[name] = None if data is None else dict(data)
        merged["sources"] = {name: r.to_dict() for name, r in self.sources.items()}
        return merged


@dataclass
class EnrichmentResult:
    """Merged entity plus aggregate indicators for UI feedback."""
    restaurant: EnrichedRestaurant
    loading: bool = False
    error: Optional[str] = None

    @property
    def availability(self) -> Dict[str, bool]:
        return self.restaurant.availability


# =============================================================================
# STALE SWEEP
# =============================================================================

@dataclass
class SweepItemResult:
    restaurant_id: str
    restaurant_name: Optional[str]
    success: bool
    error: Optional[str] = None
    sources: Dict[str, Any] = field(default_factory=dict)
    elapsed_seconds: float = 0.0


@dataclass
class SweepReport:
    """Aggregate result of one stale-sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    items: List[SweepItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "items": [asdict(item) for item in self.items],
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Per-item detail, one row per swept restaurant."""
        columns = ["restaurant_id", "restaurant_name", "success", "error", "elapsed_seconds"]
        if not self.items:
            return pd.DataFrame(columns=columns)
        rows = [{c: getattr(item, c) for c in columns} for item in self.items]
        return pd.DataFrame(rows, columns=columns)


# =============================================================================
# SYNC
# =============================================================================

@dataclass
class SyncResult:
    """Outcome of one outbox push + hydration pass."""
    pushed: int = 0
    failed: int = 0
    skipped: int = 0
    hydrated: int = 0
    ran: bool = True

    @property
    def ok(self) -> bool:
        return self.ran and self.failed == 0
