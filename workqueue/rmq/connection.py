"""
RabbitMQ connection management.

Opens amqpstorm connections from a RabbitMQConfig, with SSL support and an
optional retry policy for transient failures, and wraps them in the
transport Connection interface.
"""

import logging
import ssl
from typing import Callable, Optional

import amqpstorm

from workqueue.config import RabbitMQConfig
from workqueue.retry import RetryConfig, retry
from workqueue.rmq.channel import AmqpChannel
from workqueue.transport import ChannelClosedError, Connection

logger = logging.getLogger(__name__)


def get_rabbitmq_ssl_options(hostname: Optional[str]) -> dict:
    """
    Create SSL options for a RabbitMQ connection.

    A fresh context is built every call so forked processes never share one.

    Raises:
        RuntimeError: If hostname is empty or None
    """
    if hostname is None or len(hostname) == 0:
        raise RuntimeError(
            "SSL is enabled but no hostname provided. "
            "Please set RABBITMQ_SSL_HOSTNAME"
        )
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_default_certs(purpose=ssl.Purpose.SERVER_AUTH)
    return {
        "context": context,
        "server_hostname": hostname,
    }


def open_rabbitmq_connection(config: RabbitMQConfig) -> amqpstorm.Connection:
    """Open a raw amqpstorm connection."""
    ssl_options = None
    if config.ssl_enabled:
        ssl_options = get_rabbitmq_ssl_options(config.ssl_hostname or config.host)

    connection = amqpstorm.Connection(
        hostname=config.host,
        username=config.username,
        password=config.password,
        port=config.port,
        virtual_host=config.virtual_host,
        heartbeat=config.heartbeat,
        timeout=config.timeout,
        ssl=config.ssl_enabled,
        ssl_options=ssl_options,
    )
    logger.info(
        "RabbitMQ connection established to %s:%s%s",
        config.host,
        config.port,
        config.virtual_host,
    )
    return connection


class AmqpConnection(Connection):
    """Transport connection backed by amqpstorm."""

    def __init__(self, connection: amqpstorm.Connection, prefetch_count: int = 1):
        self._connection = connection
        self._prefetch_count = prefetch_count

    @property
    def is_open(self) -> bool:
        return self._connection.is_open

    def channel(self) -> AmqpChannel:
        if not self._connection.is_open:
            raise ChannelClosedError("connection is closed")
        channel = self._connection.channel()
        # Fair dispatch between competing consumers
        channel.basic.qos(prefetch_count=self._prefetch_count)
        logger.debug("Opened channel %s", channel)
        return AmqpChannel(channel)

    def close(self) -> None:
        if self._connection.is_open:
            self._connection.close()


def amqp_connection_factory(
    config: RabbitMQConfig,
    retry_config: Optional[RetryConfig] = None,
    prefetch_count: int = 1,
) -> Callable[[], AmqpConnection]:
    """
    Build a callable that opens a new AmqpConnection.

    Args:
        config: Broker connection parameters
        retry_config: Retry policy for opening the connection, None for a single attempt
        prefetch_count: Unacknowledged deliveries allowed per consumer
    """
    def _connect() -> AmqpConnection:
        return AmqpConnection(open_rabbitmq_connection(config), prefetch_count)

    if retry_config is not None:
        return retry(retry_config)(_connect)
    return _connect
