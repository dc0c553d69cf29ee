"""
Connection manager for the yowlink server link.

Owns the TLS stream, its read loop, the single writer, the heartbeat, and
the reconnection state machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTING -> ...

CLOSED is reached only through disconnect().
"""

import asyncio
import contextlib
import json
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from .config import ConnectionConfig, Endpoint
from .events import (
    Connected,
    Disconnected,
    Event,
    EventChannel,
    FrameReceived,
    MaxReconnectExceeded,
)
from .frame import Frame, FrameBuffer, FrameType, encode_frame
from .models import ConnectionState, ConnectionStatus
from .queue import WriteQueue
from .types import (
    MAX_FRAME_ID,
    MAX_PAYLOAD_SIZE,
    LinkConnectionError,
    MalformedFrameError,
    MaxReconnectError,
    NotConnectedError,
    PayloadTooLargeError,
    YowlinkError,
)

logger = logging.getLogger(__name__)

StreamPair = Tuple[asyncio.StreamReader, asyncio.StreamWriter]
Opener = Callable[[Endpoint, ConnectionConfig], Awaitable[StreamPair]]
FrameHandler = Callable[[Frame], None]
StateListener = Callable[[ConnectionState, ConnectionState], None]


async def open_tls_stream(endpoint: Endpoint, config: ConnectionConfig) -> StreamPair:
    """Open a TLS stream to an endpoint using the configured validation policy."""
    return await asyncio.open_connection(
        endpoint.host,
        endpoint.port,
        ssl=config.ssl_context(),
        server_hostname=endpoint.host,
    )


class ConnectionManager:
    """
    One long-lived connection to the server.

    Example usage:
        ```python
        events = EventChannel()
        manager = ConnectionManager(ConnectionConfig.local(5222), events)

        await manager.connect()
        frame_id = await manager.send(FrameType.TEXT, b'{"to": "bob", "text": "hi"}')
        await manager.disconnect()
        ```

    Args:
        config: Endpoints, timeouts and backoff policy.
        events: Channel for lifecycle events (and frames when no frame handler is set).
        on_frame: Called for every decoded inbound frame, typically MessageRouter.route.
        opener: Coroutine opening the stream; defaults to TLS via asyncio.
        sleep: Coroutine used to wait out reconnect backoff delays.
        on_state_change: Called with (old, new) on every state transition.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        events: Optional[EventChannel] = None,
        on_frame: Optional[FrameHandler] = None,
        opener: Opener = open_tls_stream,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: Optional[StateListener] = None,
    ) -> None:
        self.config = config
        self.events = events
        self.on_frame = on_frame
        self.on_state_change = on_state_change
        self._opener = opener
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._attempts = 0
        self._endpoint: Optional[Endpoint] = None

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._buffer = FrameBuffer(config.max_frame_size)
        self._writes = WriteQueue()
        self._connect_lock = asyncio.Lock()

        self._read_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # MARK: - Properties

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def generation(self) -> int:
        """Incremented on every successful (re)connect."""
        return self._generation

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def status(self) -> ConnectionStatus:
        """Snapshot of the connection state."""
        return ConnectionStatus(
            state=self._state,
            generation=self._generation,
            reconnect_attempts=self._attempts,
            max_reconnect_attempts=self.config.max_attempts,
            endpoint=str(self._endpoint) if self._endpoint else None,
            pending_writes=self._writes.length,
        )

    # MARK: - Public API

    async def connect(self, endpoint: Optional[Endpoint] = None) -> None:
        """
        Open the connection.

        Without an explicit endpoint the configured list is tried in order,
        starting with the primary. connect_timeout bounds each endpoint
        attempt, so a full sweep can take up to connect_timeout times the
        number of endpoints.

        Raises:
            LinkConnectionError: If every endpoint fails or times out, or the
                manager has been closed.
        """
        if self._state is ConnectionState.CLOSED:
            raise LinkConnectionError("Connection manager is closed")
        if self._state is ConnectionState.CONNECTED:
            return

        # A manual connect supersedes any scheduled reconnection
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            self._reconnect_task = None

        try:
            await self._open(endpoint)
        except LinkConnectionError:
            if self._state is ConnectionState.CONNECTING:
                self._set_state(ConnectionState.DISCONNECTED)
            raise

    async def send(
        self,
        frame_type: int,
        payload: bytes,
        frame_id: Optional[int] = None,
    ) -> int:
        """
        Frame a payload and write it to the stream.

        Args:
            frame_type: One of the FrameType codes.
            payload: Frame body (at most 65526 bytes).
            frame_id: Correlation id; random if omitted.

        Returns:
            The frame id used.

        Raises:
            InvalidFrameTypeError: If the type code is unknown.
            PayloadTooLargeError: If the payload does not fit in one frame.
            NotConnectedError: If the connection is not established.
            QueueFullError: If too many frames are already waiting to be written.
        """
        frame_type = FrameType.parse(frame_type)
        payload = bytes(payload)
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise PayloadTooLargeError(len(payload))
        if frame_id is not None and not 0 <= frame_id <= MAX_FRAME_ID:
            raise ValueError(f"Frame id out of range: {frame_id}")
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(self._state.value)

        frame = Frame.create(frame_type, payload, frame_id)
        await self._writes.write(encode_frame(frame))

        logger.debug("Sent frame type=%s id=%d length=%d", frame_type.name, frame.id, len(payload))
        return frame.id

    async def disconnect(self) -> None:
        """Close the connection for good. Safe to call more than once."""
        if self._state is ConnectionState.CLOSED:
            return

        logger.info("Disconnecting")
        was_connected = self._state is ConnectionState.CONNECTED
        generation = self._generation
        writer = self._writer

        tasks = self._teardown(include_reconnect=True)
        self._set_state(ConnectionState.CLOSED)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if writer is not None:
            with contextlib.suppress(OSError):
                await writer.wait_closed()

        if was_connected:
            self._publish(Disconnected(reason="closed by client", generation=generation))
        logger.info("Disconnected")

    # MARK: - Connection lifecycle

    async def _open(self, endpoint: Optional[Endpoint] = None) -> None:
        async with self._connect_lock:
            if self._state is ConnectionState.CONNECTED:
                return
            await self._open_locked(endpoint)

    async def _open_locked(self, endpoint: Optional[Endpoint]) -> None:
        candidates = [endpoint] if endpoint is not None else list(self.config.endpoints)
        if not candidates:
            raise LinkConnectionError("No endpoints configured")

        self._set_state(ConnectionState.CONNECTING)
        last_error = LinkConnectionError("No endpoint reachable")

        for candidate in candidates:
            logger.info("Connecting to %s", candidate)
            try:
                reader, writer = await asyncio.wait_for(
                    self._opener(candidate, self.config),
                    timeout=self.config.connect_timeout,
                )
            except asyncio.TimeoutError:
                last_error = LinkConnectionError(
                    f"Connection to {candidate} timed out after {self.config.connect_timeout:.0f}s"
                )
            except OSError as exc:
                last_error = LinkConnectionError(f"Connection to {candidate} failed: {exc}")
            else:
                if self._state is ConnectionState.CLOSED:
                    writer.close()
                    raise LinkConnectionError("Connection manager closed while connecting")
                self._attach(candidate, reader, writer)
                return

            logger.warning("%s", last_error)

        raise last_error

    def _attach(
        self,
        endpoint: Endpoint,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._generation += 1
        generation = self._generation

        self._endpoint = endpoint
        self._reader = reader
        self._writer = writer
        self._buffer.clear()
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)

        self._read_task = asyncio.create_task(self._read_loop(generation, reader))
        self._writer_task = asyncio.create_task(self._write_loop(generation, writer))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(generation))

        logger.info("Connected to %s (generation %d)", endpoint, generation)
        self._publish(Connected(endpoint=str(endpoint), generation=generation))

    def _connection_lost(self, generation: int, error: BaseException) -> None:
        # Tasks from an older connection must not tear down a newer one
        if generation != self._generation or self._state is not ConnectionState.CONNECTED:
            return

        logger.warning("Connection lost: %s", error)
        self._teardown(include_reconnect=False)
        self._set_state(ConnectionState.RECONNECTING)
        self._publish(Disconnected(reason=str(error) or type(error).__name__, generation=generation))
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        try:
            while True:
                if self._attempts >= self.config.max_attempts:
                    error = MaxReconnectError(self._attempts)
                    logger.error("%s; giving up until connect() is called", error)
                    self._set_state(ConnectionState.DISCONNECTED)
                    self._publish(MaxReconnectExceeded(error=error))
                    return

                self._attempts += 1
                delay = self.config.reconnect_delay(self._attempts)
                self._set_state(ConnectionState.RECONNECTING)
                logger.info(
                    "Reconnection attempt %d/%d in %.1fs",
                    self._attempts,
                    self.config.max_attempts,
                    delay,
                )
                await self._sleep(delay)

                try:
                    await self._open()
                except LinkConnectionError as exc:
                    if self._state is ConnectionState.CLOSED:
                        return
                    logger.warning("Reconnection attempt %d failed: %s", self._attempts, exc)
                    self._set_state(ConnectionState.RECONNECTING)
                    continue
                return
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _teardown(self, include_reconnect: bool) -> List[asyncio.Task]:
        """Cancel tasks, close the stream and fail queued writes. Idempotent."""
        current = asyncio.current_task()
        cancelled: List[asyncio.Task] = []

        tasks = [self._read_task, self._writer_task, self._heartbeat_task]
        if include_reconnect:
            tasks.append(self._reconnect_task)
            self._reconnect_task = None

        for task in tasks:
            if task is None or task.done() or task is current:
                continue
            task.cancel()
            cancelled.append(task)

        self._read_task = None
        self._writer_task = None
        self._heartbeat_task = None

        if self._writer is not None:
            self._writer.close()
        self._writer = None
        self._reader = None
        self._buffer.clear()

        failed = self._writes.fail_pending()
        if failed:
            logger.debug("Failed %d queued writes", failed)

        return cancelled

    # MARK: - Tasks

    async def _read_loop(self, generation: int, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.read(self.config.read_chunk_size)
                if not data:
                    raise LinkConnectionError("Connection closed by server")
                for frame in self._buffer.feed(data):
                    self._dispatch_frame(frame)
        except asyncio.CancelledError:
            raise
        except MalformedFrameError as exc:
            logger.error("Malformed frame, dropping connection: %s", exc)
            self._connection_lost(generation, exc)
        except OSError as exc:
            self._connection_lost(generation, exc)

    async def _write_loop(self, generation: int, writer: asyncio.StreamWriter) -> None:
        try:
            await self._writes.run(writer)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._connection_lost(generation, exc)

    async def _heartbeat_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            if generation != self._generation or self._state is not ConnectionState.CONNECTED:
                return

            payload = json.dumps({"timestamp": int(time.time() * 1000)}).encode("utf-8")
            try:
                await self.send(FrameType.HEARTBEAT, payload)
            except YowlinkError as exc:
                logger.warning("Heartbeat failed: %s", exc)

    # MARK: - Helpers

    def _dispatch_frame(self, frame: Frame) -> None:
        logger.debug("Received frame type=0x%02x id=%d length=%d", frame.type, frame.id, len(frame.payload))

        if self.on_frame is not None:
            try:
                self.on_frame(frame)
            except Exception:
                logger.exception("Frame handler failed for frame %d", frame.id)
            return

        try:
            frame_type = FrameType(frame.type)
        except ValueError:
            logger.warning("Dropping frame %d with unknown type 0x%02x", frame.id, frame.type)
            return
        self._publish(FrameReceived(type=frame_type, frame=frame))

    def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        if old is state:
            return
        self._state = state
        logger.debug("State %s -> %s", old.value, state.value)
        if self.on_state_change is not None:
            self.on_state_change(old, state)

    def _publish(self, event: Event) -> None:
        if self.events is not None:
            self.events.publish(event)
