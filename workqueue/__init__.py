"""
Work queue repository on top of RabbitMQ.

This package provides two delivery patterns:
- Broadcast: fire-and-forget fanout to every listener
- Work queues: durable queues with competing consumers and explicit ack/nack

Example:
    ```python
    from workqueue import WorkQueueConfig, WorkQueueRepository

    repo = WorkQueueRepository(WorkQueueConfig.from_env())
    repo.subscribe_to_broadcast(lambda message: print(message), name="printer")
    repo.broadcast({"type": "ping"})
    ```
"""

from workqueue.config import RabbitMQConfig, WorkQueueConfig
from workqueue.exceptions import (
    AdminError,
    BrokerConnectionError,
    DeliveryProcessingError,
    ListenerDiedError,
    PublishError,
    SubscribeError,
    WorkQueueError,
)
from workqueue.repository import WorkQueueRepository
from workqueue.serializer import JSONSerializer, Message
from workqueue.subscriber import Subscription

__version__ = "0.1.0"

__all__ = [
    # Config
    "RabbitMQConfig",
    "WorkQueueConfig",
    # Repository
    "WorkQueueRepository",
    "Subscription",
    "JSONSerializer",
    "Message",
    # Errors
    "AdminError",
    "BrokerConnectionError",
    "DeliveryProcessingError",
    "ListenerDiedError",
    "PublishError",
    "SubscribeError",
    "WorkQueueError",
]
