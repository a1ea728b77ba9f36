"""
Transport capability interfaces.

The repository talks to the broker only through these interfaces. The AMQP
implementation lives in workqueue.rmq, an in-process one in workqueue.memory.
"""

import abc
import queue
import threading
from dataclasses import dataclass
from typing import Optional, Union


class ChannelClosedError(Exception):
    """Raised when a channel or connection is used after it was closed."""
    pass


class ConsumerShutdown(Exception):
    """Raised by next_delivery() once the consumer has been shut down.

    The reason the consumer stopped, when known, is chained as __cause__.
    """
    pass


@dataclass(frozen=True)
class Delivery:
    """One received message and the tag used to ack or nack it."""
    body: Union[bytes, str]
    delivery_tag: int
    redelivered: bool = False


class QueueingConsumer:
    """
    Pull-style consumer buffer.

    The transport pushes deliveries in with handle_delivery() from whatever
    thread it receives them on; a listener thread pulls them out with
    next_delivery(), which blocks without timeout. handle_shutdown() wakes the
    listener with ConsumerShutdown.
    """

    _SHUTDOWN = object()

    def __init__(self, queue_name: str, auto_ack: bool):
        self.queue_name = queue_name
        self.auto_ack = auto_ack
        self.consumer_tag: Optional[str] = None
        self._deliveries: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._shutdown = False
        self._shutdown_cause: Optional[BaseException] = None

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def handle_delivery(self, delivery: Delivery) -> None:
        self._deliveries.put(delivery)

    def handle_shutdown(self, cause: Optional[BaseException] = None) -> None:
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            self._shutdown_cause = cause
        self._deliveries.put(self._SHUTDOWN)

    def next_delivery(self, timeout: Optional[float] = None) -> Delivery:
        """
        Block until the next delivery arrives.

        Raises:
            ConsumerShutdown: The consumer was shut down.
            queue.Empty: Only when a timeout is given and expires.
        """
        item = self._deliveries.get(timeout=timeout)
        if item is self._SHUTDOWN:
            # leave the marker for any other waiter
            self._deliveries.put(self._SHUTDOWN)
            raise ConsumerShutdown(
                f"consumer on queue {self.queue_name!r} was shut down"
            ) from self._shutdown_cause
        return item


class Channel(abc.ABC):
    """Abstract broker channel."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        pass

    @abc.abstractmethod
    def exchange_declare(self, name: str, kind: str, durable: bool = False) -> None:
        pass

    @abc.abstractmethod
    def queue_declare(
        self,
        name: str = "",
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        """
        Declare a queue.

        Args:
            name: Queue name, empty string for a server-generated name

        Returns:
            The actual queue name
        """
        pass

    @abc.abstractmethod
    def queue_bind(self, queue_name: str, exchange: str, routing_key: str = "") -> None:
        pass

    @abc.abstractmethod
    def queue_delete(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def publish(self, exchange: str, routing_key: str, body: bytes) -> None:
        pass

    @abc.abstractmethod
    def consume(self, queue_name: str, auto_ack: bool) -> QueueingConsumer:
        """Register a consumer and return the buffer its deliveries land in."""
        pass

    @abc.abstractmethod
    def ack(self, delivery_tag: int) -> None:
        pass

    @abc.abstractmethod
    def nack(self, delivery_tag: int, requeue: bool = False) -> None:
        pass

    @abc.abstractmethod
    def close(self) -> None:
        pass


class Connection(abc.ABC):
    """Abstract broker connection."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        pass

    @abc.abstractmethod
    def channel(self) -> Channel:
        pass

    @abc.abstractmethod
    def close(self) -> None:
        pass


__all__ = [
    "Channel",
    "ChannelClosedError",
    "Connection",
    "ConsumerShutdown",
    "Delivery",
    "QueueingConsumer",
]
