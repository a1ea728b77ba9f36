"""Tests for RabbitMQ connection opening."""

import ssl
from unittest.mock import Mock, patch

import pytest
from amqpstorm.exception import AMQPConnectionError

from workqueue.config import RabbitMQConfig
from workqueue.retry import RetryConfig
from workqueue.rmq.channel import AmqpChannel
from workqueue.rmq.connection import (
    AmqpConnection,
    amqp_connection_factory,
    get_rabbitmq_ssl_options,
    open_rabbitmq_connection,
)
from workqueue.transport import ChannelClosedError


def test_open_connection_passes_config():
    config = RabbitMQConfig(
        host="rmq.internal",
        port=5673,
        username="worker",
        password="secret",
        virtual_host="dev",
    )

    with patch("workqueue.rmq.connection.amqpstorm.Connection") as connection_cls:
        open_rabbitmq_connection(config)

    connection_cls.assert_called_once_with(
        hostname="rmq.internal",
        username="worker",
        password="secret",
        port=5673,
        virtual_host="dev",
        heartbeat=60,
        timeout=10,
        ssl=False,
        ssl_options=None,
    )


def test_open_connection_with_ssl_builds_context():
    config = RabbitMQConfig(host="rmq.internal", ssl_enabled=True, ssl_hostname="rmq.example.com")

    with patch("workqueue.rmq.connection.amqpstorm.Connection") as connection_cls:
        open_rabbitmq_connection(config)

    ssl_options = connection_cls.call_args.kwargs["ssl_options"]
    assert connection_cls.call_args.kwargs["ssl"] is True
    assert ssl_options["server_hostname"] == "rmq.example.com"
    assert isinstance(ssl_options["context"], ssl.SSLContext)


def test_ssl_options_require_hostname():
    with pytest.raises(RuntimeError):
        get_rabbitmq_ssl_options("")
    with pytest.raises(RuntimeError):
        get_rabbitmq_ssl_options(None)


def test_channel_sets_prefetch():
    raw_connection = Mock()
    raw_connection.is_open = True

    channel = AmqpConnection(raw_connection, prefetch_count=4).channel()

    raw_connection.channel.return_value.basic.qos.assert_called_once_with(prefetch_count=4)
    assert isinstance(channel, AmqpChannel)


def test_channel_on_closed_connection_fails():
    raw_connection = Mock()
    raw_connection.is_open = False

    with pytest.raises(ChannelClosedError):
        AmqpConnection(raw_connection).channel()


def test_factory_retries_transient_errors():
    config = RabbitMQConfig()
    retry_config = RetryConfig(max_attempts=3, initial_delay=0.001, jitter=False)

    with patch("workqueue.rmq.connection.amqpstorm.Connection") as connection_cls:
        connection_cls.side_effect = [AMQPConnectionError("refused"), Mock()]
        connection = amqp_connection_factory(config, retry_config=retry_config)()

    assert isinstance(connection, AmqpConnection)
    assert connection_cls.call_count == 2


def test_factory_without_retry_fails_fast():
    with patch("workqueue.rmq.connection.amqpstorm.Connection") as connection_cls:
        connection_cls.side_effect = AMQPConnectionError("refused")
        with pytest.raises(AMQPConnectionError):
            amqp_connection_factory(RabbitMQConfig())()

    assert connection_cls.call_count == 1
