"""
Background listener loops.

Each subscription runs on its own daemon thread, pulling deliveries one at a
time from a QueueingConsumer. Per-message failures are contained in the loop
iteration; a failure of the wait itself ends the loop with ListenerDiedError,
which is stored on the Subscription and handed to the error sink.
"""

import abc
import logging
import threading
import time
from typing import Callable, Optional

from workqueue.exceptions import DeliveryProcessingError, ListenerDiedError
from workqueue.serializer import JSONSerializer, Message
from workqueue.transport import Channel, Delivery, QueueingConsumer

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], None]


def log_listener_death(subscription: "Subscription", error: ListenerDiedError) -> None:
    """Default error sink: nothing supervises the listener, so shout."""
    logger.critical(
        "Listener %s on queue %s has died: %s",
        subscription.name,
        subscription.queue_name,
        error,
        exc_info=error,
    )


ErrorSink = Callable[["Subscription", ListenerDiedError], None]


class Subscription(abc.ABC):
    """
    Handle on one running listener.

    There is no cancel operation; the listener stops when its channel is
    closed, at which point error holds the ListenerDiedError.
    """

    kind = "listener"

    def __init__(
        self,
        channel: Channel,
        consumer: QueueingConsumer,
        callback: MessageCallback,
        name: str,
        serializer: Optional[JSONSerializer] = None,
        on_died: Optional[ErrorSink] = None,
    ) -> None:
        self._channel = channel
        self._consumer = consumer
        self._callback = callback
        self._serializer = serializer or JSONSerializer()
        self._on_died = on_died or log_listener_death
        self.name = name
        self.processed = 0
        self.failed = 0
        self.error: Optional[ListenerDiedError] = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"rmq-subscribe-{name}",
            daemon=True,
        )

    @property
    def queue_name(self) -> str:
        return self._consumer.queue_name

    def start(self) -> "Subscription":
        self._thread.start()
        logger.info("%s %s started on queue %s", self.kind, self.name, self.queue_name)
        return self

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        try:
            while True:
                delivery = self._consumer.next_delivery()
                self._process(delivery)
        except Exception as e:
            error = ListenerDiedError(f"{self.kind} has died", self.name)
            error.__cause__ = e
            self.error = error
            try:
                self._on_died(self, error)
            except Exception:
                logger.exception("Error sink for %s raised", self.name)

    def _decode(self, delivery: Delivery) -> Message:
        try:
            return self._serializer.deserialize(delivery.body)
        except Exception as e:
            raise DeliveryProcessingError(
                f"malformed message body on queue {self.queue_name}",
                delivery.delivery_tag,
            ) from e

    @abc.abstractmethod
    def _process(self, delivery: Delivery) -> None:
        """Handle one delivery. Must not raise for per-message failures."""
        pass


class BroadcastListener(Subscription):
    """Auto-acknowledged listener on an anonymous queue bound to the fanout exchange."""

    kind = "broadcast listener"

    def _process(self, delivery: Delivery) -> None:
        try:
            message = self._decode(delivery)
            logger.debug(
                "received message from broadcast queue [%s]: %s",
                self.queue_name,
                self._serializer.dumps(message),
            )
            self._callback(message)
            self.processed += 1
        except Exception as e:
            self.failed += 1
            logger.error("problem in broadcast thread %s", self.name, exc_info=e)


class WorkQueueListener(Subscription):
    """Manually acknowledged competing consumer on a durable queue."""

    kind = "work queue listener"

    def _process(self, delivery: Delivery) -> None:
        tag = delivery.delivery_tag
        try:
            message = self._decode(delivery)
            start = time.monotonic()
            try:
                logger.debug(
                    "received message from work queue [%s]: %s",
                    self.queue_name,
                    self._serializer.dumps(message),
                )
                self._callback(message)
            except Exception as e:
                raise DeliveryProcessingError(
                    f"callback failed for message on queue {self.queue_name}", tag
                ) from e
            work_ms = (time.monotonic() - start) * 1000
        except DeliveryProcessingError as e:
            logger.error("problem in work queue thread %s: %s", self.name, e, exc_info=e)
            try:
                self._channel.nack(tag, requeue=False)
            except Exception:
                logger.exception("Could not nack message: %s", tag)
            self.failed += 1
            return

        logger.debug(
            "ack'ing message from work queue [%s]: %s (work time: %.1fms)",
            self.queue_name,
            tag,
            work_ms,
        )
        try:
            self._channel.ack(tag)
        except Exception:
            logger.exception("Could not ack message: %s", tag)
            self.failed += 1
            return
        self.processed += 1


__all__ = [
    "BroadcastListener",
    "ErrorSink",
    "MessageCallback",
    "Subscription",
    "WorkQueueListener",
    "log_listener_death",
]
