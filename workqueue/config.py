"""
Work queue configuration dataclasses.

This module provides the broker connection parameters and the names of the
topology the repository manages.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from workqueue.retry import RetryConfig, is_transient_rmq_error

DEFAULT_BROADCAST_EXCHANGE = "exBroadcast"
DEFAULT_GRAPH_PROPERTY_QUEUE = "graphProperty"


def _env_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RabbitMQConfig:
    """
    Connection parameters for RabbitMQ.

    Attributes:
        host: RabbitMQ server hostname
        port: RabbitMQ server port (usually 5672 or 5671 for SSL)
        username: Authentication username
        password: Authentication password
        virtual_host: Virtual host to connect to
        ssl_enabled: Whether to use SSL/TLS
        ssl_hostname: Server hostname for certificate verification
        heartbeat: AMQP heartbeat interval in seconds
        timeout: Socket timeout in seconds
    """
    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    ssl_enabled: bool = False
    ssl_hostname: Optional[str] = None
    heartbeat: int = 60
    timeout: int = 10

    @classmethod
    def from_env(cls) -> "RabbitMQConfig":
        """Build the configuration from RABBITMQ_* environment variables."""
        defaults = cls()
        return cls(
            host=os.getenv("RABBITMQ_HOST", defaults.host),
            port=int(os.getenv("RABBITMQ_PORT", defaults.port)),
            username=os.getenv("RABBITMQ_USER", defaults.username),
            password=os.getenv("RABBITMQ_PASSWORD", defaults.password),
            virtual_host=os.getenv("RABBITMQ_VHOST") or defaults.virtual_host,
            ssl_enabled=_env_bool(os.getenv("RABBITMQ_ENABLE_SSL")),
            ssl_hostname=os.getenv("RABBITMQ_SSL_HOSTNAME") or None,
        )

    def __repr__(self) -> str:
        # keep the password out of logs
        return (
            f"RabbitMQConfig(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, virtual_host={self.virtual_host!r}, "
            f"ssl_enabled={self.ssl_enabled})"
        )


def default_connect_retry() -> RetryConfig:
    return RetryConfig(
        max_attempts=5,
        initial_delay=1.0,
        max_delay=30.0,
        exponential_base=2.0,
        exception_filter=is_transient_rmq_error,
    )


@dataclass
class WorkQueueConfig:
    """
    Configuration for the work queue repository.

    Attributes:
        rabbitmq: Broker connection parameters
        broadcast_exchange: Name of the fanout exchange used for broadcasts
        broadcast_durable: Declare the broadcast exchange as durable
        graph_property_queue: Name of the reserved system work queue
        prefetch_count: Unacknowledged deliveries allowed per consumer
        connect_retry: Retry policy for opening the connection, None disables retry
    """
    rabbitmq: RabbitMQConfig = field(default_factory=RabbitMQConfig)
    broadcast_exchange: str = DEFAULT_BROADCAST_EXCHANGE
    broadcast_durable: bool = False
    graph_property_queue: str = DEFAULT_GRAPH_PROPERTY_QUEUE
    prefetch_count: int = 1
    connect_retry: Optional[RetryConfig] = field(default_factory=default_connect_retry)

    @classmethod
    def from_env(cls) -> "WorkQueueConfig":
        """Build the configuration from environment variables."""
        return cls(
            rabbitmq=RabbitMQConfig.from_env(),
            broadcast_exchange=os.getenv(
                "WORKQUEUE_BROADCAST_EXCHANGE", DEFAULT_BROADCAST_EXCHANGE
            ),
            broadcast_durable=_env_bool(os.getenv("WORKQUEUE_BROADCAST_DURABLE")),
            graph_property_queue=os.getenv(
                "WORKQUEUE_GRAPH_PROPERTY_QUEUE", DEFAULT_GRAPH_PROPERTY_QUEUE
            ),
            prefetch_count=int(os.getenv("WORKQUEUE_PREFETCH_COUNT", "1")),
        )
