# Workers package - error taxonomy and retry policy
# (runners live in modelproxy.workers.poller, sweeps in modelproxy.workers.sweeper)

from modelproxy.workers.base import (
    ErrorCode,
    WorkerException,
    NonRetryableError,
    RetryableError,
    RetryPolicy,
    is_retryable,
)

__all__ = [
    "ErrorCode",
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "RetryPolicy",
    "is_retryable",
]
