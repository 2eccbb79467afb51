"""
Base Worker Classes
Error taxonomy and the exponential-backoff retry policy shared by the
provider client and the per-job runners.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorCode:
    """Error codes written onto failed jobs and API error bodies."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    JOB_NOT_COMPLETED = "JOB_NOT_COMPLETED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    AUTH_REJECTED = "AUTH_REJECTED"
    GENERATION_FAILED = "GENERATION_FAILED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    MISSING_RESULT = "MISSING_RESULT"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class WorkerException(Exception):
    """Base exception for all orchestration errors."""

    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_error_info(self) -> Dict[str, Any]:
        """Structured form stored on a failed job."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": datetime.now(timezone.utc),
        }


class NonRetryableError(WorkerException):
    """Error that should NOT be retried (e.g., invalid input)."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, retryable=False, code=code, details=details)


class RetryableError(WorkerException):
    """Error that SHOULD be retried (e.g., API timeout)."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, retryable=True, code=code, details=details)


class ValidationError(NonRetryableError):
    """Bad caller input. Surfaced immediately, never retried."""
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class JobNotFoundError(NonRetryableError):
    code = ErrorCode.JOB_NOT_FOUND
    status_code = 404


class InvalidTransitionError(NonRetryableError):
    """Raised when a job update would leave a terminal state or move backwards."""
    code = ErrorCode.INVALID_TRANSITION
    status_code = 409


class TransientProviderError(RetryableError):
    """Network failure or 5xx from the provider."""
    code = ErrorCode.PROVIDER_UNAVAILABLE
    status_code = 502


class ProviderTimeoutError(TransientProviderError):
    """A single provider call exceeded its timeout."""
    code = ErrorCode.PROVIDER_TIMEOUT
    status_code = 504


class RetryExhaustedError(TransientProviderError):
    """All retry attempts for a transient failure were used up."""

    def __init__(self, message: str, attempts: int, last_error: Exception):
        code = getattr(last_error, "code", None)
        super().__init__(message, code=code, details={"attempts": attempts})
        self.attempts = attempts
        self.last_error = last_error


class PermanentProviderError(NonRetryableError):
    """4xx response, malformed payload or explicit provider rejection."""
    code = ErrorCode.PROVIDER_REJECTED
    status_code = 502


class AuthRejectedError(PermanentProviderError):
    """Provider refused the caller's credential."""
    code = ErrorCode.AUTH_REJECTED
    status_code = 401


class JobTimeoutError(NonRetryableError):
    """The whole job exceeded its deadline or poll attempt budget."""
    code = ErrorCode.GENERATION_TIMEOUT
    status_code = 504


class StorageError(WorkerException):
    """Upload to or download from durable storage failed."""
    code = ErrorCode.UPLOAD_FAILED
    status_code = 502


class ServiceUnavailableError(NonRetryableError):
    """The orchestrator is shutting down and accepts no new jobs."""
    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503


def is_retryable(error: BaseException) -> bool:
    """Whether a failed call may be attempted again."""
    return isinstance(error, WorkerException) and error.retryable


@dataclass
class RetryPolicy:
    """
    Exponential backoff for a single network call.

    Attempt ``n`` (0-indexed) that fails with a retryable error waits
    ``base_delay * 2**n`` seconds, capped at ``max_delay``, before the next
    attempt. ``jitter`` spreads the delay by +/- that fraction.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        operation: Optional[str] = None,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
        **kwargs
    ) -> T:
        """
        Run ``func`` with retries.

        Args:
            func: Coroutine function performing one attempt
            operation: Name used in log lines
            on_retry: Called with (attempt, delay, error) before each backoff sleep

        Returns:
            The first successful result

        Raises:
            RetryExhaustedError: after max_retries + 1 retryable failures
            WorkerException: the first non-retryable failure, unchanged
        """
        name = operation or getattr(func, "__name__", "call")

        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)

            except WorkerException as e:
                if not is_retryable(e):
                    logger.error(f"[Non-Retryable] {name}: {e}")
                    raise

                if attempt >= self.max_retries:
                    logger.error(f"[Failed] {name} exhausted all {self.max_retries} retries: {e}")
                    raise RetryExhaustedError(
                        f"{name} failed after {attempt + 1} attempts: {e.message}",
                        attempts=attempt + 1,
                        last_error=e
                    ) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    f"[Retry {attempt + 1}/{self.max_retries}] {name} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                await self.sleep(delay)

        # range() always returns or raises above; kept for type checkers
        raise RuntimeError(f"{name}: retry loop exited without result")


__all__ = [
    "ErrorCode",
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "ValidationError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "TransientProviderError",
    "ProviderTimeoutError",
    "RetryExhaustedError",
    "PermanentProviderError",
    "AuthRejectedError",
    "JobTimeoutError",
    "StorageError",
    "ServiceUnavailableError",
    "is_retryable",
    "RetryPolicy",
]
