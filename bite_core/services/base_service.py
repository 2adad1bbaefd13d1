# =============================================================================
# bite_core/services/base_service.py
# Shared plumbing for background services (sweep, enrichment, status refresh)
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable, Awaitable
from dataclasses import dataclass

from bite_core.logging import get_logger, LogContext
from bite_core.errors import handle_error, BiteCoreError, StoreWriteFailure

ProgressCallback = Callable[[int, str], None]


@dataclass
class ServiceResult:
    """
    Outcome of a service run that must not raise into the caller.

    ``error_code`` is the BiteCoreError code when one was raised, or
    ``"EXCEPTION"`` for anything unexpected.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> ServiceResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: str = "UNKNOWN", details: Dict[str, Any] = None) -> ServiceResult:
        return cls(success=False, error=error, error_code=error_code, details=details)

    @classmethod
    def from_error(cls, e: BiteCoreError) -> ServiceResult:
        return cls.fail(e.message, error_code=e.code, details=e.details)


class BaseService(ABC):
    """
    Base for services that run batches or fan out to providers.

    Subclasses get a class-named logger, timed operation logging and
    item-count progress reporting.

    Usage:
        class StaleSweepJob(BaseService):
            async def run(self) -> SweepReport:
                ...
                self.report_progress(done, total, "Refreshed Luigi's")

        result = await job.safe_execute("Stale restaurant sweep", job.run)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._progress_callback: Optional[ProgressCallback] = None

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Callback receives (percent complete, message)."""
        self._progress_callback = callback

    def report_progress(self, done: int, total: int, message: str = "") -> None:
        if self._progress_callback is None or total <= 0:
            return
        try:
            self._progress_callback(int(done * 100 / total), message)
        except Exception as e:
            self.logger.error(f"Progress callback raised: {e}")

    def log_operation(self, operation: str) -> LogContext:
        return LogContext(self.logger, operation)

    async def safe_execute(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Await ``func`` and wrap its outcome in a ServiceResult.

        Local store write failures are not wrapped: losing a write must
        reach the caller.
        """
        try:
            with self.log_operation(operation):
                result = await func(*args, **kwargs)
            return ServiceResult.ok(result)
        except StoreWriteFailure:
            raise
        except BiteCoreError as e:
            handle_error(e, show_user_message=False)
            return ServiceResult.from_error(e)
        except Exception as e:
            self.logger.error(f"{operation} failed: {e}")
            return ServiceResult.fail(str(e), error_code="EXCEPTION")
