"""
amqpstorm channel adapter.

amqpstorm dispatches consumed messages from one loop per channel. A pump
thread drives that loop with process_data_events and hands each message to
the QueueingConsumer registered under its consumer tag, so every listener
pulls from its own buffer. A consumer the broker cancels (its queue was
deleted) loses its tag on the amqpstorm channel; the pump shuts its buffer
down after each pass. When the pump stops, because the channel closed or
the connection failed, every remaining buffer is shut down with the cause.
"""

import logging
import threading
import time
from typing import Dict, Optional

import amqpstorm

from workqueue.transport import (
    Channel,
    ChannelClosedError,
    Delivery,
    QueueingConsumer,
)

logger = logging.getLogger(__name__)

IDLE_WAIT = 0.01


class AmqpChannel(Channel):
    """Transport channel backed by an amqpstorm Channel."""

    def __init__(self, channel: amqpstorm.Channel):
        self._channel = channel
        self._consumers: Dict[str, QueueingConsumer] = {}
        self._lock = threading.Lock()
        self._pump_thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return self._channel.is_open

    def exchange_declare(self, name: str, kind: str, durable: bool = False) -> None:
        self._channel.exchange.declare(
            exchange=name,
            exchange_type=kind,
            durable=durable,
        )

    def queue_declare(
        self,
        name: str = "",
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        result = self._channel.queue.declare(
            queue=name,
            durable=durable,
            exclusive=exclusive,
            auto_delete=auto_delete,
        )
        # Server-generated names only come back in the declare-ok frame
        return result.get("queue", name)

    def queue_bind(self, queue_name: str, exchange: str, routing_key: str = "") -> None:
        self._channel.queue.bind(
            queue=queue_name,
            exchange=exchange,
            routing_key=routing_key,
        )

    def queue_delete(self, name: str) -> None:
        self._channel.queue.delete(queue=name)

    def publish(self, exchange: str, routing_key: str, body: bytes) -> None:
        self._channel.basic.publish(
            body=body,
            routing_key=routing_key,
            exchange=exchange,
        )

    def consume(self, queue_name: str, auto_ack: bool) -> QueueingConsumer:
        consumer = QueueingConsumer(queue_name, auto_ack)

        def _on_message(message: amqpstorm.Message) -> None:
            consumer.handle_delivery(
                Delivery(
                    body=message.body,
                    delivery_tag=message.delivery_tag,
                    redelivered=bool(message.redelivered),
                )
            )

        with self._lock:
            consumer.consumer_tag = self._channel.basic.consume(
                callback=_on_message,
                queue=queue_name,
                no_ack=auto_ack,
            )
            self._consumers[consumer.consumer_tag] = consumer
            self._ensure_pump()
        logger.info(
            "Consuming from queue %s with tag %s (auto_ack=%s)",
            queue_name,
            consumer.consumer_tag,
            auto_ack,
        )
        return consumer

    def ack(self, delivery_tag: int) -> None:
        self._channel.basic.ack(delivery_tag=delivery_tag, multiple=False)

    def nack(self, delivery_tag: int, requeue: bool = False) -> None:
        self._channel.basic.nack(
            delivery_tag=delivery_tag,
            multiple=False,
            requeue=requeue,
        )

    def close(self) -> None:
        try:
            if self._channel.is_open:
                self._channel.close()
        finally:
            self._shutdown_consumers(ChannelClosedError("channel closed"))

    def _ensure_pump(self) -> None:
        # caller holds the lock
        if self._pump_thread is not None and self._pump_thread.is_alive():
            return
        self._pump_thread = threading.Thread(
            target=self._pump,
            name=f"rmq-pump-{self._channel.channel_id}",
            daemon=True,
        )
        self._pump_thread.start()

    def _pump(self) -> None:
        try:
            while self._channel.is_open:
                self._channel.process_data_events(auto_decode=False)
                with self._lock:
                    self._shutdown_cancelled()
                    if not self._consumers:
                        self._pump_thread = None
                        return
                time.sleep(IDLE_WAIT)
            cause: BaseException = ChannelClosedError("channel closed")
        except Exception as e:
            logger.warning("Consumer loop on channel stopped with %s: %s", type(e).__name__, e)
            cause = e
        with self._lock:
            self._pump_thread = None
            consumers = list(self._consumers.values())
            self._consumers.clear()
        for consumer in consumers:
            consumer.handle_shutdown(cause)

    def _shutdown_cancelled(self) -> None:
        # caller holds the lock
        active = set(self._channel.consumer_tags)
        for tag in [tag for tag in self._consumers if tag not in active]:
            consumer = self._consumers.pop(tag)
            logger.warning(
                "Consumer %s on queue %s was cancelled by the broker",
                tag,
                consumer.queue_name,
            )
            consumer.handle_shutdown(
                ChannelClosedError(f"consumer {tag} was cancelled by the broker")
            )

    def _shutdown_consumers(self, cause: BaseException) -> None:
        with self._lock:
            consumers = list(self._consumers.values())
            self._consumers.clear()
        for consumer in consumers:
            consumer.handle_shutdown(cause)
