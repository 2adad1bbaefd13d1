# =============================================================================
# bite_core/errors/handlers.py
# Error Handling Utilities for SwipeNBite Core
# =============================================================================

from __future__ import annotations
import asyncio
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any

from bite_core.logging import get_logger
from .exceptions import BiteCoreError

logger = get_logger(__name__)

T = TypeVar("T")

# Receives (level, message) for transient, non-blocking user notices.
Notifier = Callable[[str, str], None]

_notifier: Optional[Notifier] = None


def set_notifier(notifier: Optional[Notifier]) -> None:
    """
    Register the UI hook that shows transient notices (toasts).

    Pass None to fall back to logging only.
    """
    global _notifier
    _notifier = notifier


def notify(level: str, message: str) -> None:
    """Send a transient notice to the registered notifier, if any."""
    if _notifier is None:
        logger.debug(f"Notice ({level}): {message}")
        return
    try:
        _notifier(level, message)
    except Exception as e:
        logger.error(f"Error in notifier: {e}")


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        show_user_message: Whether to send a transient notice to the UI
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, BiteCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error if error.__traceback__ else None,
        )

    if show_user_message:
        if recoverable:
            notify("warning", message)
        else:
            notify("error", f"{message}. Please try again.")


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        cached = safe_execute(
            store.get_all, "restaurants",
            default=[],
            error_message="Could not read cached restaurants"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging and user feedback.

    Usage:
        with ErrorContext("Connecting realtime status updates", notify_user=False):
            source = await RealtimeStatusSource.connect(settings)

        # On error, logs (and by default notifies "Error during: <operation>")

    Non-recoverable BiteCoreErrors (store write failures) and task
    cancellation always propagate.
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        notify_user: bool = True,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.notify_user = notify_user

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if not isinstance(exc_val, Exception):
                return False
            if isinstance(exc_val, BiteCoreError):
                handle_error(exc_val, show_user_message=self.notify_user)
                return self.recoverable and exc_val.recoverable
            handle_error(
                exc_val,
                show_user_message=self.notify_user,
                user_message=f"Error during: {self.operation}",
            )
            return self.recoverable
        logger.info(f"Completed: {self.operation}")
        return False


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator to wrap functions (sync or async) with error handling.

    Usage:
        @error_boundary(default_return=0, error_message="Could not refresh favorites")
        async def hydrate_liked(self) -> int:
            ...
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if log:
                        logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                    if error_message:
                        notify("warning", error_message)
                    return default_return

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                if error_message:
                    notify("warning", error_message)
                return default_return

        return wrapper

    return decorator
