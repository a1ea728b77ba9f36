"""
Exponential backoff retry for connection setup.
"""

import logging
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Iterator, Optional, Tuple, Type

import amqpstorm.exception

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    """Total attempts, including the first one"""

    initial_delay: float = 1.0
    """Delay in seconds before the first retry"""

    max_delay: float = 60.0
    """Upper bound for a single delay"""

    exponential_base: float = 2.0
    """delay = initial_delay * exponential_base ** attempt"""

    jitter: bool = True
    """Spread delays by +/- jitter_factor"""

    jitter_factor: float = 0.1

    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
    """Exception types eligible for retry"""

    exception_filter: Optional[Callable[[Exception], bool]] = None
    """Further narrows which exceptions are retried"""


def backoff_delays(config: RetryConfig) -> Iterator[float]:
    """Yield the delay to sleep before each retry (max_attempts - 1 values)."""
    for attempt in range(max(config.max_attempts - 1, 0)):
        delay = min(
            config.initial_delay * (config.exponential_base ** attempt),
            config.max_delay,
        )
        if config.jitter:
            spread = delay * config.jitter_factor
            delay += random.uniform(-spread, spread)
        yield max(0.0, delay)


def _is_retryable(config: RetryConfig, exc: Exception) -> bool:
    if not isinstance(exc, config.exceptions):
        return False
    if config.exception_filter is not None:
        return config.exception_filter(exc)
    return True


def retry(config: Optional[RetryConfig] = None) -> Callable:
    """
    Decorator retrying a function with exponential backoff.

    The last exception is re-raised once attempts run out, or immediately when
    it does not match the config.

    Example:
        @retry(RetryConfig(max_attempts=5, exception_filter=is_transient_rmq_error))
        def connect():
            return amqpstorm.Connection(...)
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(config)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not _is_retryable(config, e):
                        raise
                    delay = next(delays, None)
                    if delay is None:
                        logger.warning(
                            "Max retry attempts (%d) reached for %s",
                            config.max_attempts,
                            func.__name__,
                        )
                        raise
                    logger.warning(
                        "Attempt %d/%d failed for %s with %s: %s. Retrying in %.2fs...",
                        attempt,
                        config.max_attempts,
                        func.__name__,
                        type(e).__name__,
                        e,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator


def is_transient_rmq_error(exception: Exception) -> bool:
    """
    Determine if a RabbitMQ error is transient and worth retrying.

    Connection and channel errors from amqpstorm, and socket level errors,
    are transient. Everything else (bad credentials surfaced as
    configuration mistakes, programming errors) is not.
    """
    if isinstance(exception, (
        amqpstorm.exception.AMQPConnectionError,
        amqpstorm.exception.AMQPChannelError,
    )):
        return True
    return isinstance(exception, (ConnectionError, OSError))
