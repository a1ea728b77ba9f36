"""
Work queue repository.

Single entry point for broadcasting to every listener through a fanout
exchange and for distributing work over durable queues with explicit
acknowledgement.

Example:
    from workqueue import WorkQueueConfig, WorkQueueRepository

    with WorkQueueRepository(WorkQueueConfig.from_env()) as repo:
        repo.subscribe_to_work_queue(handle_job, queue_name="jobs")
        repo.push("jobs", {"type": "ping"})
        repo.broadcast({"type": "reload"})
"""

import logging
import threading
from typing import Callable, List, Optional

from workqueue.config import WorkQueueConfig
from workqueue.exceptions import (
    AdminError,
    BrokerConnectionError,
    PublishError,
    SubscribeError,
)
from workqueue.serializer import JSONSerializer, Message
from workqueue.subscriber import (
    BroadcastListener,
    ErrorSink,
    MessageCallback,
    Subscription,
    WorkQueueListener,
)
from workqueue.topology import FANOUT, TopologyCache
from workqueue.transport import Channel, Connection

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Connection]


def _subscriber_name(callback: MessageCallback) -> str:
    return getattr(callback, "__qualname__", None) or type(callback).__qualname__


class WorkQueueRepository:
    """
    Publish/subscribe facade over one broker connection and channel.

    The repository owns the connection, the channel and the topology cache.
    Listeners share the channel for ack/nack and never close it.
    """

    def __init__(
        self,
        config: Optional[WorkQueueConfig] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        serializer: Optional[JSONSerializer] = None,
        on_listener_died: Optional[ErrorSink] = None,
    ) -> None:
        """
        Open the connection and channel.

        Args:
            config: Repository configuration (defaults to WorkQueueConfig())
            connection_factory: Callable returning a transport Connection.
                Defaults to an amqpstorm connection built from config.rabbitmq.
            serializer: Message serializer (default: JSONSerializer)
            on_listener_died: Error sink for listeners that die; receives
                (subscription, error). Defaults to logging at CRITICAL.

        Raises:
            BrokerConnectionError: If the connection or channel cannot be opened
        """
        self._config = config or WorkQueueConfig()
        if connection_factory is None:
            from workqueue.rmq import amqp_connection_factory

            connection_factory = amqp_connection_factory(
                self._config.rabbitmq,
                retry_config=self._config.connect_retry,
                prefetch_count=self._config.prefetch_count,
            )
        self._connection_factory = connection_factory
        self._serializer = serializer or JSONSerializer()
        self._on_listener_died = on_listener_died
        self._topology = TopologyCache()
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._connection: Optional[Connection] = None
        self._channel: Optional[Channel] = None
        self._open()

    @property
    def config(self) -> WorkQueueConfig:
        return self._config

    @property
    def topology(self) -> TopologyCache:
        return self._topology

    @property
    def subscriptions(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    @property
    def broadcast_exchange(self) -> str:
        return self._config.broadcast_exchange

    @property
    def graph_property_queue(self) -> str:
        return self._config.graph_property_queue

    def _open(self) -> None:
        try:
            connection = self._connection_factory()
        except Exception as e:
            raise BrokerConnectionError("Could not open broker connection") from e
        try:
            channel = connection.channel()
        except Exception as e:
            self._close_quietly(connection, "connection")
            raise BrokerConnectionError("Could not open broker channel") from e
        self._connection = connection
        self._channel = channel

    def _require_channel(self) -> Channel:
        if self._channel is None:
            raise BrokerConnectionError("Repository has been shut down")
        return self._channel

    def _ensure_broadcast_exchange(self, channel: Channel) -> None:
        self._topology.ensure_exchange(
            channel,
            self.broadcast_exchange,
            FANOUT,
            durable=self._config.broadcast_durable,
        )

    # Publishing

    def broadcast(self, message: Message) -> None:
        """
        Publish a message to every broadcast listener.

        Raises:
            PublishError: If serialization, the exchange declare or the publish fails
        """
        try:
            channel = self._require_channel()
            self._ensure_broadcast_exchange(channel)
            body = self._serializer.serialize(message)
            logger.debug(
                "publishing message to broadcast exchange [%s]: %s",
                self.broadcast_exchange,
                self._serializer.dumps(message),
            )
            channel.publish(self.broadcast_exchange, "", body)
        except Exception as e:
            raise PublishError("Could not broadcast message") from e

    def push(self, queue_name: str, message: Message) -> None:
        """
        Publish a message to a durable work queue.

        Raises:
            PublishError: If serialization, the queue declare or the publish fails
        """
        try:
            channel = self._require_channel()
            self._topology.ensure_queue(channel, queue_name, durable=True)
            body = self._serializer.serialize(message)
            logger.debug(
                "enqueueing message to queue [%s]: %s",
                queue_name,
                self._serializer.dumps(message),
            )
            channel.publish("", queue_name, body)
        except Exception as e:
            raise PublishError(f"Could not push on queue {queue_name}") from e

    def push_graph_property(self, message: Message) -> None:
        """Push a message on the reserved graph property queue."""
        self.push(self.graph_property_queue, message)

    def flush(self) -> None:
        """Publishes are synchronous; nothing is buffered."""
        pass

    # Subscribing

    def _register(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription.start()

    def subscribe_to_broadcast(
        self,
        callback: MessageCallback,
        name: Optional[str] = None,
        on_died: Optional[ErrorSink] = None,
    ) -> Subscription:
        """
        Receive every broadcast message on a background thread.

        Declares a server-named exclusive queue bound to the broadcast
        exchange and consumes it with auto-acknowledgement. Callback errors
        are logged and the listener carries on.

        Args:
            callback: Called with each message
            name: Logical subscriber name used for the thread and logs
            on_died: Error sink overriding the repository's for this listener

        Raises:
            SubscribeError: If the queue cannot be declared, bound or consumed
        """
        try:
            channel = self._require_channel()
            self._ensure_broadcast_exchange(channel)
            queue_name = channel.queue_declare(
                "", durable=False, exclusive=True, auto_delete=True
            )
            channel.queue_bind(queue_name, self.broadcast_exchange, "")
            consumer = channel.consume(queue_name, auto_ack=True)
        except Exception as e:
            raise SubscribeError("Could not subscribe to broadcasts") from e

        return self._register(
            BroadcastListener(
                channel,
                consumer,
                callback,
                name or _subscriber_name(callback),
                serializer=self._serializer,
                on_died=on_died or self._on_listener_died,
            )
        )

    def subscribe_to_work_queue(
        self,
        callback: MessageCallback,
        queue_name: Optional[str] = None,
        name: Optional[str] = None,
        on_died: Optional[ErrorSink] = None,
    ) -> Subscription:
        """
        Process messages from a durable work queue on a background thread.

        Each delivery is acked once the callback returns and nacked without
        requeue when decoding or the callback fails.

        Args:
            callback: Called with each message
            queue_name: Queue to consume (default: the graph property queue)
            name: Logical subscriber name used for the thread and logs
            on_died: Error sink overriding the repository's for this listener

        Raises:
            SubscribeError: If the queue cannot be declared or consumed
        """
        queue_name = queue_name or self.graph_property_queue
        try:
            channel = self._require_channel()
            # the broadcast exchange is always declared ahead of work queues
            self._ensure_broadcast_exchange(channel)
            # not cached: delete_queue() leaves the name in the topology cache
            channel.queue_declare(
                queue_name, durable=True, exclusive=False, auto_delete=False
            )
            consumer = channel.consume(queue_name, auto_ack=False)
        except Exception as e:
            raise SubscribeError(f"Could not subscribe to queue {queue_name}") from e

        return self._register(
            WorkQueueListener(
                channel,
                consumer,
                callback,
                name or _subscriber_name(callback),
                serializer=self._serializer,
                on_died=on_died or self._on_listener_died,
            )
        )

    # Lifecycle and admin

    def delete_queue(self) -> None:
        """
        Delete the reserved graph property queue.

        The topology cache is left untouched; the queue is declared again
        only after reconnect().

        Raises:
            AdminError: If the broker refuses or the channel is unusable
        """
        queue_name = self.graph_property_queue
        logger.info("deleting queue: %s", queue_name)
        try:
            self._require_channel().queue_delete(queue_name)
        except Exception as e:
            raise AdminError(f"Could not delete queue {queue_name}") from e

    def reconnect(self) -> None:
        """
        Replace the connection and channel and forget the declared topology.

        Running listeners are not moved over; they die with the old channel
        and must be subscribed again.

        Raises:
            BrokerConnectionError: If the new connection cannot be opened
        """
        logger.info("Reconnecting work queue repository")
        self._teardown()
        self._topology.reset()
        self._open()

    def shutdown(self) -> None:
        """Close the channel, then the connection. Never raises."""
        self._teardown()

    def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None
        if channel is not None:
            logger.debug("Closing RabbitMQ channel")
            self._close_quietly(channel, "channel")
        if connection is not None:
            logger.debug("Closing RabbitMQ connection")
            self._close_quietly(connection, "connection")

    @staticmethod
    def _close_quietly(resource, kind: str) -> None:
        try:
            resource.close()
        except Exception:
            logger.exception("Could not close RabbitMQ %s", kind)

    def __enter__(self) -> "WorkQueueRepository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False


__all__ = ["ConnectionFactory", "WorkQueueRepository"]
