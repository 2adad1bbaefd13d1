# =============================================================================
# bite_core/errors/exceptions.py
# Custom Exception Hierarchy for SwipeNBite Core
# =============================================================================

from typing import Optional, Dict, Any


class BiteCoreError(Exception):
    """
    Base exception for all SwipeNBite core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "BITE_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# STORE EXCEPTIONS
# =============================================================================

class NotFound(BiteCoreError):
    """Raised when an entity is absent from the local store or the backend"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if entity_id:
            details["entity_id"] = entity_id

        super().__init__(
            message=message,
            code="STORE_404",
            details=details,
            **kwargs,
        )


class StoreWriteFailure(BiteCoreError):
    """Raised when a durable write to the local store could not be committed"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        entity_ids: Optional[list] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if entity_ids:
            details["entity_ids"] = entity_ids

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# PROVIDER EXCEPTIONS
# =============================================================================

class ProviderUnavailable(BiteCoreError):
    """
    Raised when an upstream enrichment or status source failed or timed out.

    ``retryable`` separates transient failures (timeouts, 429, 5xx) from
    permanent rejections (bad credentials, malformed requests).
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if status_code is not None:
            details["status_code"] = status_code
        details["retryable"] = retryable

        super().__init__(
            message=message,
            code="PROVIDER_001",
            details=details,
            **kwargs,
        )
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


# =============================================================================
# RECONCILIATION EXCEPTIONS
# =============================================================================

class ConflictIgnored(BiteCoreError):
    """An update was discarded because a newer timestamp is already held"""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        held: Optional[str] = None,
        incoming: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_id:
            details["entity_id"] = entity_id
        details["held"] = held
        details["incoming"] = incoming

        super().__init__(
            message=message,
            code="STATUS_409",
            details=details,
            **kwargs,
        )


class SyncConflict(BiteCoreError):
    """An outbox record was already synced by a concurrent push"""

    def __init__(self, message: str, order_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if order_id:
            details["order_id"] = order_id

        super().__init__(
            message=message,
            code="SYNC_409",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(BiteCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
