# =============================================================================
# bite_core/errors/__init__.py
# Centralized Error Handling for SwipeNBite Core
# =============================================================================

from .exceptions import (
    BiteCoreError,
    NotFound,
    StoreWriteFailure,
    ProviderUnavailable,
    ConflictIgnored,
    SyncConflict,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    error_boundary,
    set_notifier,
    notify,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "BiteCoreError",
    "NotFound",
    "StoreWriteFailure",
    "ProviderUnavailable",
    "ConflictIgnored",
    "SyncConflict",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "error_boundary",
    "set_notifier",
    "notify",
    "ErrorContext",
]
