"""Single-writer queue for outbound frames."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Tuple

from ..types import NotConnectedError, QueueFullError

logger = logging.getLogger(__name__)


@dataclass
class WriteQueueConfig:
    """Configuration for the write queue."""
    max_queue_size: int = 1000


@dataclass
class _PendingWrite:
    data: bytes
    future: "asyncio.Future[None]" = field(repr=False)


class WriteQueue:
    """
    Serializes all stream writes through one consumer task.

    Each enqueued buffer is written whole before the next one starts, so
    concurrent senders never interleave bytes on the wire.
    """

    def __init__(self, config: Optional[WriteQueueConfig] = None) -> None:
        """Creates a new write queue with the given configuration."""
        self._config = config or WriteQueueConfig()
        self._queue: Deque[_PendingWrite] = deque()
        self._ready = asyncio.Event()
        self._written = 0

    async def write(self, data: bytes) -> None:
        """Enqueue a buffer and wait until it has been written and drained."""
        if len(self._queue) >= self._config.max_queue_size:
            raise QueueFullError(len(self._queue))

        future: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self._queue.append(_PendingWrite(data=data, future=future))
        self._ready.set()
        await future

    async def run(self, writer: asyncio.StreamWriter) -> None:
        """Drain the queue into a stream until cancelled or a write fails."""
        while True:
            if not self._queue:
                self._ready.clear()
                await self._ready.wait()
                continue

            pending = self._queue[0]
            try:
                writer.write(pending.data)
                await writer.drain()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._queue.popleft()
                if not pending.future.done():
                    pending.future.set_exception(NotConnectedError("write failed"))
                logger.warning("Stream write failed: %s", exc)
                raise

            self._queue.popleft()
            self._written += 1
            if not pending.future.done():
                pending.future.set_result(None)

    def fail_pending(self, reason: str = "disconnected") -> int:
        """Fail every queued write with NotConnectedError. Returns the count."""
        failed = 0
        while self._queue:
            pending = self._queue.popleft()
            if not pending.future.done():
                pending.future.set_exception(NotConnectedError(reason))
                failed += 1
        return failed

    @property
    def length(self) -> int:
        """Returns the number of frames waiting to be written."""
        return len(self._queue)

    @property
    def is_empty(self) -> bool:
        """Returns true if the queue is empty."""
        return len(self._queue) == 0

    @property
    def written(self) -> int:
        """Total frames written."""
        return self._written
