"""
RabbitMQ transport.

This package provides the amqpstorm-backed implementation of the transport
interfaces:
- Connection opening with SSL support and connect retry
- A channel adapter that buffers consumed messages per consumer
"""

from workqueue.rmq.channel import AmqpChannel
from workqueue.rmq.connection import (
    AmqpConnection,
    amqp_connection_factory,
    get_rabbitmq_ssl_options,
    open_rabbitmq_connection,
)

__all__ = [
    "AmqpChannel",
    "AmqpConnection",
    "amqp_connection_factory",
    "get_rabbitmq_ssl_options",
    "open_rabbitmq_connection",
]
