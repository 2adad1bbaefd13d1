# =============================================================================
# bite_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors backend connectivity.

Status comes from two places:
- socket probes of the backend host (check_connection, background monitor)
- platform-reported events (set_online), e.g. the OS network callback

Callbacks fire only when the status actually changes.
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)

Probe = Callable[[str, int, float], bool]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Backend reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but backend unavailable
    CHECKING = "checking"       # Currently checking status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    backend_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


def socket_probe(host: str, port: int, timeout: float) -> bool:
    """True if a TCP connection to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ConnectionManager:
    """
    Connectivity detection for the sync manager.

    Usage:
        manager = ConnectionManager(settings.supabase_url)
        manager.register_callback(lambda state: ...)
        manager.initialize(start_monitoring=True)
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for connection tests

    INTERNET_HOSTS: Tuple[Tuple[str, int], ...] = (
        ("1.1.1.1", 53),
        ("8.8.8.8", 53),
    )

    def __init__(self, backend_url: Optional[str] = None, probe: Probe = socket_probe):
        self.backend_url = backend_url
        self._probe = probe
        self._state = ConnectionState()
        self._state_lock = threading.Lock()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._initialized = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    def initialize(self, start_monitoring: bool = False) -> None:
        """
        Run the first check and optionally start background monitoring.

        Args:
            start_monitoring: Whether to start the monitor thread
        """
        if self._initialized:
            return

        self.check_connection()
        if start_monitoring:
            self.start_monitoring()

        self._initialized = True
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")

    def _backend_address(self) -> Optional[Tuple[str, int]]:
        if not self.backend_url:
            return None
        parsed = urlparse(self.backend_url)
        if not parsed.hostname:
            return None
        default_port = 80 if parsed.scheme == "http" else 443
        return parsed.hostname, parsed.port or default_port

    def check_connection(self) -> ConnectionState:
        """
        Probe the backend host (and the internet when it fails).

        Returns:
            Updated ConnectionState
        """
        address = self._backend_address()
        if address is None:
            # Local-only mode: nothing to sync against
            backend_ok = internet_ok = False
            self._state.error_message = "Backend URL not configured"
        else:
            backend_ok = self._probe(address[0], address[1], self.CONNECTION_TIMEOUT)
            internet_ok = backend_ok or any(
                self._probe(host, port, self.CONNECTION_TIMEOUT)
                for host, port in self.INTERNET_HOSTS
            )

        if backend_ok:
            status = ConnectionStatus.ONLINE
        elif internet_ok:
            status = ConnectionStatus.DEGRADED
        else:
            status = ConnectionStatus.OFFLINE

        self._update(status, internet_ok, backend_ok)
        return self._state

    def set_online(self, online: bool) -> None:
        """Apply a platform-reported connectivity event."""
        status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE
        self._update(status, online, online)

    def _update(self, status: ConnectionStatus, internet_ok: bool, backend_ok: bool) -> None:
        with self._state_lock:
            old_status = self._state.status
            now = datetime.now()
            self._state.status = status
            self._state.internet_available = internet_ok
            self._state.backend_available = backend_ok
            self._state.last_check = now
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
            changed = old_status != status

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks()

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.CHECK_INTERVAL_ONLINE
                if self.is_online
                else self.CHECK_INTERVAL_OFFLINE
            )

            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "internet": self._state.internet_available,
            "backend": self._state.backend_available,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
