"""Tracks which exchanges and queues were already declared on a channel."""

import logging
import threading
from typing import Set

from workqueue.transport import Channel

logger = logging.getLogger(__name__)

FANOUT = "fanout"


class TopologyCache:
    """
    Set of exchange/queue names declared on the current channel.

    The check, declare and insert run under one lock so concurrent first use
    of a name results in a single declare call. A declare that raises leaves
    the name unrecorded and the next call tries again.
    """

    def __init__(self) -> None:
        self._declared: Set[str] = set()
        self._lock = threading.Lock()

    def ensure_exchange(
        self, channel: Channel, name: str, kind: str = FANOUT, durable: bool = False
    ) -> None:
        with self._lock:
            if name in self._declared:
                return
            logger.debug("Declaring %s exchange %s (durable=%s)", kind, name, durable)
            channel.exchange_declare(name, kind, durable=durable)
            self._declared.add(name)

    def ensure_queue(self, channel: Channel, name: str, durable: bool = True) -> None:
        with self._lock:
            if name in self._declared:
                return
            logger.debug("Declaring queue %s (durable=%s)", name, durable)
            channel.queue_declare(name, durable=durable, exclusive=False, auto_delete=False)
            self._declared.add(name)

    def reset(self) -> None:
        with self._lock:
            self._declared.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._declared

    def __len__(self) -> int:
        with self._lock:
            return len(self._declared)
