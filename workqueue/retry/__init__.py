"""
Retry utilities for opening broker connections.

Publishes are never retried; only connection setup goes through here.
"""

from workqueue.retry.retry import (
    RetryConfig,
    backoff_delays,
    is_transient_rmq_error,
    retry,
)

__all__ = [
    "RetryConfig",
    "backoff_delays",
    "is_transient_rmq_error",
    "retry",
]
