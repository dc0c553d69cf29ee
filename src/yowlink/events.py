"""Events published by the connection and router, and the channel carrying them."""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Type, Union

from .frame import Frame
from .types import MaxReconnectError

logger = logging.getLogger(__name__)


class Event:
    """Base class for all published events."""


@dataclass(frozen=True)
class Connected(Event):
    """The link is up."""
    endpoint: str
    generation: int


@dataclass(frozen=True)
class Disconnected(Event):
    """The link went down (or was closed)."""
    reason: str
    generation: int


@dataclass(frozen=True)
class FrameReceived(Event):
    """A frame with a known type code arrived."""
    type: int
    frame: Frame

    @property
    def raw(self) -> bytes:
        return self.frame.payload


@dataclass(frozen=True)
class MessageDecrypted(Event):
    """An encrypted envelope verified and decrypted."""
    peer_id: str
    plaintext: Any
    frame_id: int


@dataclass(frozen=True)
class DecryptionFailed(Event):
    """An encrypted envelope was rejected."""
    peer_id: Optional[str]
    reason: str
    frame_id: int


@dataclass(frozen=True)
class MaxReconnectExceeded(Event):
    """Reconnection gave up."""
    error: MaxReconnectError


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class ChannelClosed(Exception):
    """Raised by EventChannel.get once the channel is closed and drained."""


_CLOSE = object()


class EventChannel:
    """
    Ordered single-consumer channel of events.

    Producers call publish() from the event loop. Events are delivered in
    publication order.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def publish(self, event: Event) -> None:
        """Enqueue an event without blocking."""
        if self._closed:
            logger.debug("Dropping %s published after close", type(event).__name__)
            return
        self._queue.put_nowait(event)

    async def get(self) -> Event:
        """Wait for the next event."""
        item = await self._queue.get()
        if item is _CLOSE:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSE)
            raise ChannelClosed()
        return item

    def get_nowait(self) -> Event:
        item = self._queue.get_nowait()
        if item is _CLOSE:
            self._queue.put_nowait(_CLOSE)
            raise ChannelClosed()
        return item

    def close(self) -> None:
        """Stop accepting events; consumers finish the backlog then stop."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Number of undelivered events."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while True:
            try:
                yield await self.get()
            except ChannelClosed:
                return


async def dispatch_events(
    channel: EventChannel,
    handlers: Dict[Type[Event], Handler],
) -> None:
    """
    Consume a channel and call the handler registered for each event class.

    Handlers may be plain functions or coroutines. A failing handler is
    logged and does not stop dispatch. Returns when the channel closes.
    """
    async for event in channel:
        handler = handlers.get(type(event))
        if handler is None:
            continue
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for %s failed", type(event).__name__)
