"""
In-process broker.

Implements the transport interfaces with AMQP-like semantics: fanout and
direct exchanges, the default exchange routing by queue name, durable and
server-named exclusive queues, round-robin dispatch between competing
consumers, manual ack/nack with requeue, and redelivery of unacknowledged
messages when a channel closes. Messages nacked without requeue land in
dead_letters.

Useful for local development and as a test harness; disconnect() simulates
losing the broker.
"""

import itertools
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set, Tuple

from workqueue.transport import (
    Channel,
    ChannelClosedError,
    Connection,
    Delivery,
    QueueingConsumer,
)

logger = logging.getLogger(__name__)


@dataclass
class _Exchange:
    name: str
    kind: str
    durable: bool
    bindings: Set[Tuple[str, str]] = field(default_factory=set)


@dataclass
class _Queue:
    name: str
    durable: bool
    exclusive: bool
    auto_delete: bool
    owner: Optional["MemoryChannel"] = None
    ready: Deque[Tuple[bytes, bool]] = field(default_factory=deque)
    consumers: List[Tuple["MemoryChannel", QueueingConsumer]] = field(default_factory=list)
    next_consumer: int = 0


class MemoryBroker:
    """Shared broker state; hand out connections with connect()."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._exchanges: Dict[str, _Exchange] = {}
        self._queues: Dict[str, _Queue] = {}
        self._tags = itertools.count(1)
        self._connections: List["MemoryConnection"] = []
        self.dead_letters: List[Tuple[str, bytes]] = []

    def connect(self) -> "MemoryConnection":
        connection = MemoryConnection(self)
        with self._lock:
            self._connections.append(connection)
        return connection

    def disconnect(self, cause: Optional[BaseException] = None) -> None:
        """Drop every connection as if the network went away."""
        cause = cause or ConnectionResetError("connection to broker lost")
        with self._lock:
            connections = list(self._connections)
        for connection in connections:
            connection.sever(cause)

    def has_exchange(self, name: str) -> bool:
        with self._lock:
            return name in self._exchanges

    def has_queue(self, name: str) -> bool:
        with self._lock:
            return name in self._queues

    def queue_depth(self, name: str) -> int:
        """Number of ready (undelivered) messages in a queue."""
        with self._lock:
            return len(self._queues[name].ready)

    def _forget_connection(self, connection: "MemoryConnection") -> None:
        with self._lock:
            if connection in self._connections:
                self._connections.remove(connection)

    def _declare_exchange(self, name: str, kind: str, durable: bool) -> None:
        with self._lock:
            existing = self._exchanges.get(name)
            if existing is None:
                self._exchanges[name] = _Exchange(name, kind, durable)
            elif existing.kind != kind:
                raise ValueError(
                    f"exchange {name!r} already declared as {existing.kind}"
                )

    def _declare_queue(
        self,
        channel: "MemoryChannel",
        name: str,
        durable: bool,
        exclusive: bool,
        auto_delete: bool,
    ) -> str:
        with self._lock:
            if not name:
                name = f"amq.gen-{uuid.uuid4().hex}"
            if name not in self._queues:
                self._queues[name] = _Queue(
                    name,
                    durable,
                    exclusive,
                    auto_delete,
                    owner=channel if exclusive else None,
                )
            return name

    def _bind(self, queue_name: str, exchange: str, routing_key: str) -> None:
        with self._lock:
            if exchange not in self._exchanges:
                raise ValueError(f"no exchange {exchange!r}")
            if queue_name not in self._queues:
                raise ValueError(f"no queue {queue_name!r}")
            self._exchanges[exchange].bindings.add((queue_name, routing_key))

    def _delete_queue(self, name: str) -> None:
        with self._lock:
            q = self._queues.pop(name, None)
            if q is None:
                return
            for exchange in self._exchanges.values():
                exchange.bindings = {b for b in exchange.bindings if b[0] != name}
            consumers, q.consumers = q.consumers, []
        for _, consumer in consumers:
            consumer.handle_shutdown(ChannelClosedError(f"queue {name!r} was deleted"))

    def _publish(self, exchange: str, routing_key: str, body: bytes) -> None:
        with self._lock:
            if exchange == "":
                targets = [routing_key] if routing_key in self._queues else []
            else:
                ex = self._exchanges.get(exchange)
                if ex is None:
                    raise ValueError(f"no exchange {exchange!r}")
                targets = sorted(
                    q for q, key in ex.bindings
                    if ex.kind == "fanout" or key == routing_key
                )
            for name in set(targets):
                q = self._queues[name]
                q.ready.append((bytes(body), False))
                self._dispatch(q)

    def _consume(self, channel: "MemoryChannel", queue_name: str, auto_ack: bool) -> QueueingConsumer:
        with self._lock:
            q = self._queues.get(queue_name)
            if q is None:
                raise ValueError(f"no queue {queue_name!r}")
            consumer = QueueingConsumer(queue_name, auto_ack)
            consumer.consumer_tag = f"ctag-{uuid.uuid4().hex}"
            q.consumers.append((channel, consumer))
            self._dispatch(q)
            return consumer

    def _dispatch(self, q: _Queue) -> None:
        # caller holds the lock
        while q.ready and q.consumers:
            q.next_consumer %= len(q.consumers)
            channel, consumer = q.consumers[q.next_consumer]
            q.next_consumer += 1
            body, redelivered = q.ready.popleft()
            tag = next(self._tags)
            if not consumer.auto_ack:
                channel._unacked[tag] = (q.name, body)
            consumer.handle_delivery(Delivery(body, tag, redelivered))

    def _requeue(self, queue_name: str, body: bytes) -> None:
        with self._lock:
            q = self._queues.get(queue_name)
            if q is None:
                return
            q.ready.appendleft((body, True))
            self._dispatch(q)

    def _detach_channel(self, channel: "MemoryChannel", cause: BaseException) -> None:
        """Remove a closing channel's consumers and queues, requeue its unacked messages."""
        with self._lock:
            stopped = []
            for q in list(self._queues.values()):
                mine = [c for c in q.consumers if c[0] is channel]
                if mine:
                    q.consumers = [c for c in q.consumers if c[0] is not channel]
                    stopped.extend(consumer for _, consumer in mine)
                if q.owner is channel or (q.auto_delete and mine and not q.consumers):
                    self._delete_queue(q.name)
            unacked, channel._unacked = channel._unacked, {}
            for tag in sorted(unacked, reverse=True):
                queue_name, body = unacked[tag]
                self._requeue(queue_name, body)
        for consumer in stopped:
            consumer.handle_shutdown(cause)


class MemoryChannel(Channel):
    """Channel on a MemoryBroker."""

    def __init__(self, broker: MemoryBroker, connection: "MemoryConnection") -> None:
        self._broker = broker
        self._connection = connection
        self._open = True
        self._unacked: Dict[int, Tuple[str, bytes]] = {}

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self) -> None:
        if not self._open:
            raise ChannelClosedError("channel is closed")

    def exchange_declare(self, name: str, kind: str, durable: bool = False) -> None:
        self._check_open()
        self._broker._declare_exchange(name, kind, durable)

    def queue_declare(
        self,
        name: str = "",
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        self._check_open()
        return self._broker._declare_queue(self, name, durable, exclusive, auto_delete)

    def queue_bind(self, queue_name: str, exchange: str, routing_key: str = "") -> None:
        self._check_open()
        self._broker._bind(queue_name, exchange, routing_key)

    def queue_delete(self, name: str) -> None:
        self._check_open()
        self._broker._delete_queue(name)

    def publish(self, exchange: str, routing_key: str, body: bytes) -> None:
        self._check_open()
        self._broker._publish(exchange, routing_key, body)

    def consume(self, queue_name: str, auto_ack: bool) -> QueueingConsumer:
        self._check_open()
        return self._broker._consume(self, queue_name, auto_ack)

    def ack(self, delivery_tag: int) -> None:
        self._check_open()
        with self._broker._lock:
            if self._unacked.pop(delivery_tag, None) is None:
                raise ValueError(f"unknown delivery tag {delivery_tag}")

    def nack(self, delivery_tag: int, requeue: bool = False) -> None:
        self._check_open()
        with self._broker._lock:
            entry = self._unacked.pop(delivery_tag, None)
            if entry is None:
                raise ValueError(f"unknown delivery tag {delivery_tag}")
            queue_name, body = entry
            if requeue:
                self._broker._requeue(queue_name, body)
            else:
                self._broker.dead_letters.append((queue_name, body))

    def close(self) -> None:
        self._terminate(ChannelClosedError("channel closed"))

    def _terminate(self, cause: BaseException) -> None:
        if not self._open:
            return
        self._open = False
        self._broker._detach_channel(self, cause)


class MemoryConnection(Connection):
    """Connection to a MemoryBroker."""

    def __init__(self, broker: MemoryBroker) -> None:
        self._broker = broker
        self._open = True
        self._channels: List[MemoryChannel] = []

    @property
    def is_open(self) -> bool:
        return self._open

    def channel(self) -> MemoryChannel:
        if not self._open:
            raise ChannelClosedError("connection is closed")
        channel = MemoryChannel(self._broker, self)
        self._channels.append(channel)
        return channel

    def close(self) -> None:
        self.sever(ChannelClosedError("connection closed"))

    def sever(self, cause: BaseException) -> None:
        if not self._open:
            return
        self._open = False
        for channel in self._channels:
            channel._terminate(cause)
        self._broker._forget_connection(self)
        logger.debug("memory connection closed: %s", cause)
