# =============================================================================
# bite_core/offline/__init__.py
# Offline-first storage and synchronization
# =============================================================================
"""
Offline Module for SwipeNBite Core

Components:
- LocalStore: SQLite cache of restaurants, orders, preferences and favorites
- DerivedDataCache: TTL-bound caches for derived values
- ConnectionManager: connectivity detection
- SyncManager: outbox push and backend hydration
"""

from .local_store import LocalStore
from .derived_cache import (
    DerivedDataCache,
    DerivedCacheEntry,
    CacheRead,
    DEFAULT_AGGREGATION_TTL,
    DEFAULT_INFERENCE_TTL,
)
from .connection_manager import ConnectionManager, ConnectionStatus, ConnectionState
from .sync_manager import SyncManager, SyncState

__all__ = [
    "LocalStore",
    "DerivedDataCache",
    "DerivedCacheEntry",
    "CacheRead",
    "DEFAULT_AGGREGATION_TTL",
    "DEFAULT_INFERENCE_TTL",
    "ConnectionManager",
    "ConnectionStatus",
    "ConnectionState",
    "SyncManager",
    "SyncState",
]
