"""yowlink queue module."""

from .write_queue import WriteQueue, WriteQueueConfig, QueueFullError

__all__ = [
    "WriteQueue",
    "WriteQueueConfig",
    "QueueFullError",
]
