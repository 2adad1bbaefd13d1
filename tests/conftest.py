# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
import random
import threading
import time
from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from bite_core.errors import NotFound, set_notifier
from bite_core.utils.timing import ManualClock, from_epoch, to_datetime

# 2023-11-14T22:13:20Z
START_EPOCH = 1_700_000_000.0


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

def iso_at(epoch: float, offset_seconds: float = 0) -> str:
    """ISO timestamp `offset_seconds` after `epoch`"""
    return from_epoch(epoch + offset_seconds).isoformat()


@pytest.fixture
def sample_restaurant() -> Dict:
    """One restaurant row as the backend returns it"""
    return {
        "id": "r-1",
        "name": "Luigi's Trattoria",
        "address": "12 Mulberry St, New York, NY",
        "latitude": 40.7209,
        "longitude": -73.9961,
        "cuisine": "italian",
        "price": "$$",
        "google_place_id": "ChIJ-luigi",
        "last_synced_at": None,
    }


@pytest.fixture
def sample_restaurants() -> List[Dict]:
    """Ten restaurants with mixed sync ages"""
    rows = []
    for i in range(10):
        rows.append({
            "id": f"r-{i}",
            "name": f"Restaurant {i}",
            "latitude": 40.70 + i / 100,
            "longitude": -73.99,
            "cuisine": ["italian", "thai", "mexican"][i % 3],
            "price": ["$", "$$"][i % 2],
            "last_synced_at": None if i < 3 else iso_at(START_EPOCH, -(30 - i) * 86400),
        })
    return rows


@pytest.fixture
def sample_status_record() -> Dict:
    """Status columns checked one minute before START_EPOCH"""
    return {
        "id": "r-1",
        "is_open_now": True,
        "status": "operational",
        "hours": {"weekday_text": ["Monday: 11:00 AM - 10:00 PM"]},
        "opening_hours": "Monday: 11:00 AM - 10:00 PM",
        "estimated_wait_minutes": 15,
        "current_popularity": 40,
        "status_last_checked": iso_at(START_EPOCH, -60),
    }


@pytest.fixture
def sample_order() -> Dict:
    return {
        "id": "o-1",
        "user_id": "u-1",
        "restaurant_id": "r-1",
        "items": [{"name": "Margherita", "quantity": 2, "price": 14.5}],
        "total": 29.0,
        "created_at": iso_at(START_EPOCH),
    }


# =============================================================================
# TIME / RANDOMNESS FIXTURES
# =============================================================================

class RecordingSleeper:
    """Zero-delay sleeper that remembers every requested delay"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


async def park(seconds: float) -> None:
    """Sleeper that never returns on its own; tasks using it wait to be cancelled"""
    await asyncio.Event().wait()


@pytest.fixture
def clock():
    """Manual epoch clock starting at START_EPOCH"""
    return ManualClock(START_EPOCH)


@pytest.fixture
def monotonic():
    """Manual monotonic clock for TTL checks"""
    return ManualClock(0)


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def rng():
    return random.Random(42)


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def store(tmp_path, clock):
    """Initialized LocalStore in a temp directory"""
    from bite_core.offline import LocalStore

    local_store = LocalStore(tmp_path / "swipenbite.db", clock=clock).initialize()
    yield local_store
    local_store.close()


@pytest.fixture
def settings(tmp_path):
    from bite_core.config import Settings

    return Settings(db_path=tmp_path / "swipenbite.db")


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value.data = []
    return mock_client


@pytest.fixture
def notices():
    """Capture transient user notices sent through the notifier hook"""
    received = []
    set_notifier(lambda level, message: received.append((level, message)))
    yield received
    set_notifier(None)


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Thread-safe, since services call it through asyncio.to_thread.
    """

    def __init__(self, restaurants: List[Dict] = None):
        self._lock = threading.Lock()
        self.restaurants: Dict[str, Dict] = {r["id"]: dict(r) for r in (restaurants or [])}
        self.orders: Dict[str, Dict] = {}
        self.liked: List[Dict] = []
        self.profiles: Dict[str, Dict] = {}
        self.functions: Dict[str, object] = {}

        self.pushed: List[str] = []
        self.updates: List[tuple] = []
        self.invocations: List[tuple] = []
        self.status_refresh_calls = 0

        self.fail_push_ids = set()
        self.push_delay = 0.0
        self.refresh_delay = 0.0
        self.refresh_error = None
        self.stale_query_error = None

    # Restaurants

    def fetch_restaurant(self, restaurant_id):
        with self._lock:
            if restaurant_id not in self.restaurants:
                raise NotFound(f"Restaurant {restaurant_id} not found",
                               collection="restaurants", entity_id=restaurant_id)
            return dict(self.restaurants[restaurant_id])

    def fetch_restaurant_status(self, restaurant_id):
        return self.fetch_restaurant(restaurant_id)

    def fetch_restaurants(self, limit=100):
        with self._lock:
            return [dict(r) for r in list(self.restaurants.values())[:limit]]

    def fetch_stale_restaurants(self, before, limit=10):
        if self.stale_query_error is not None:
            raise self.stale_query_error
        with self._lock:
            rows = [
                dict(r) for r in self.restaurants.values()
                if r.get("last_synced_at") is None or to_datetime(r["last_synced_at"]) < before
            ]
        rows.sort(key=lambda r: (
            r.get("last_synced_at") is not None,
            to_datetime(r.get("last_synced_at")) or before,
            r["id"],
        ))
        return rows[:limit]

    def update_restaurant(self, restaurant_id, fields):
        with self._lock:
            self.updates.append((restaurant_id, dict(fields)))
            self.restaurants.setdefault(restaurant_id, {"id": restaurant_id}).update(fields)

    # User data

    def push_order(self, order):
        if self.push_delay:
            time.sleep(self.push_delay)
        if order["id"] in self.fail_push_ids:
            raise ConnectionError(f"backend rejected {order['id']}")
        with self._lock:
            self.pushed.append(order["id"])
            self.orders[order["id"]] = dict(order)
        return order

    def fetch_user_orders(self, user_id, since=None):
        with self._lock:
            return [dict(o) for o in self.orders.values() if o.get("user_id") == user_id]

    def fetch_liked_restaurants(self, user_id):
        with self._lock:
            return [dict(l) for l in self.liked if l.get("user_id") == user_id]

    def fetch_profile(self, user_id):
        return self.profiles.get(user_id)

    # Functions

    def invoke(self, function_name, body):
        self.invocations.append((function_name, body))
        handler = self.functions[function_name]
        if isinstance(handler, Exception):
            raise handler
        return handler(body) if callable(handler) else handler

    def invoke_status_refresh(self, restaurant_id, place_id=None):
        with self._lock:
            self.status_refresh_calls += 1
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.fetch_restaurant_status(restaurant_id)


@pytest.fixture
def backend(sample_restaurants):
    return FakeBackend(sample_restaurants)
