"""
In-process transport.

Example:
    from workqueue.memory import MemoryBroker
    from workqueue.repository import WorkQueueRepository

    broker = MemoryBroker()
    repo = WorkQueueRepository(connection_factory=broker.connect)
"""

from workqueue.memory.broker import MemoryBroker, MemoryChannel, MemoryConnection

__all__ = ["MemoryBroker", "MemoryChannel", "MemoryConnection"]
