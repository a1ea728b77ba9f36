"""Exception hierarchy for the work queue repository."""

from typing import Optional


class WorkQueueError(Exception):
    """Base exception for the work queue repository."""
    pass


class BrokerConnectionError(WorkQueueError, ConnectionError):
    """Raised when the broker connection or channel cannot be opened."""
    pass


class PublishError(WorkQueueError):
    """Raised when a broadcast or push fails, including topology declares."""
    pass


class SubscribeError(WorkQueueError):
    """Raised when a subscription cannot declare, bind or consume its queue."""
    pass


class DeliveryProcessingError(WorkQueueError):
    """A single delivery could not be deserialized or handled.

    Contained within the listener loop; never terminates it.
    """

    def __init__(self, message: str, delivery_tag: Optional[int] = None):
        super().__init__(message)
        self.delivery_tag = delivery_tag


class ListenerDiedError(WorkQueueError):
    """The wait for the next delivery failed and the listener stopped."""

    def __init__(self, message: str, subscription_name: Optional[str] = None):
        super().__init__(message)
        self.subscription_name = subscription_name


class AdminError(WorkQueueError):
    """Raised when an administrative operation fails."""
    pass


__all__ = [
    "WorkQueueError",
    "BrokerConnectionError",
    "PublishError",
    "SubscribeError",
    "DeliveryProcessingError",
    "ListenerDiedError",
    "AdminError",
]
