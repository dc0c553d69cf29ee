"""
Chat client for the yowlink server connection.

The ChatClient wires the connection manager, message router, session store
and envelope cipher together and exposes the calls external collaborators
(registration, groups, media, device sync) build on.
"""

import base64
import json
import logging
import time
from typing import Any, Dict, Optional, Type

from .config import ConnectionConfig, Endpoint
from .connection import ConnectionManager, Opener, StateListener, open_tls_stream
from .crypto import EnvelopeCipher, Plaintext
from .envelope import Envelope, encode_envelope
from .events import Event, EventChannel, Handler, dispatch_events
from .frame import FrameType
from .models import ClientStatus
from .router import MessageRouter
from .storage import SessionStore
from .types import NotConnectedError

logger = logging.getLogger(__name__)


def _json_payload(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChatClient:
    """
    High-level client for the messaging server.

    The ChatClient provides methods for:
    - Connecting and disconnecting
    - Sending typed frames (text, media, presence, receipts, ...)
    - Encrypting payloads for a peer and sending them as envelopes
    - Consuming inbound events through a single dispatch loop

    Example usage:
        ```python
        config = ConnectionConfig.from_addresses([("chat.example.org", 5222)])

        async with ChatClient(config, local_id="alice") as client:
            client.sessions.establish("bob", agreed_root_key)
            await client.send_encrypted("bob", "Hello, Bob!")

            await client.run({
                MessageDecrypted: lambda e: print(e.peer_id, e.plaintext),
                DecryptionFailed: lambda e: print("rejected:", e.reason),
            })
        ```
    """

    def __init__(
        self,
        config: ConnectionConfig,
        local_id: str,
        sessions: Optional[SessionStore] = None,
        events: Optional[EventChannel] = None,
        opener: Opener = open_tls_stream,
        on_state_change: Optional[StateListener] = None,
    ) -> None:
        """
        Initialize the chat client.

        Args:
            config: Connection configuration.
            local_id: This endpoint's peer id, carried in outgoing envelopes.
            sessions: Session store to use (default: a new, empty store).
            events: Event channel to publish into (default: a new channel).
            opener: Stream opener (default: TLS via asyncio).
            on_state_change: Called with (old, new) connection states.
        """
        self.local_id = local_id
        self.sessions = sessions if sessions is not None else SessionStore()
        self.events = events if events is not None else EventChannel()
        self.cipher = EnvelopeCipher(self.sessions)
        self.router = MessageRouter(self.cipher, self.events)
        self.connection = ConnectionManager(
            config,
            events=self.events,
            on_frame=self.router.route,
            opener=opener,
            on_state_change=on_state_change,
        )

    async def __aenter__(self) -> "ChatClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # MARK: - Connection

    async def connect(self, endpoint: Optional[Endpoint] = None) -> None:
        """Connect to the primary endpoint, falling back through the list."""
        await self.connection.connect(endpoint)

    async def disconnect(self) -> None:
        """Close the connection and the event channel."""
        await self.connection.disconnect()
        self.events.close()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def status(self) -> ClientStatus:
        """Connection, session and routing status."""
        return ClientStatus(
            connection=self.connection.status(),
            active_sessions=len(self.sessions),
            router=self.router.stats(),
        )

    # MARK: - Events

    async def run(self, handlers: Dict[Type[Event], Handler]) -> None:
        """Dispatch inbound events to handlers until the client disconnects."""
        await dispatch_events(self.events, handlers)

    # MARK: - Sending Frames

    async def send(self, frame_type: int, payload: bytes, frame_id: Optional[int] = None) -> int:
        """
        Send a raw frame.

        Returns:
            The frame id.

        Raises:
            InvalidFrameTypeError: If the type code is unknown.
            PayloadTooLargeError: If the payload does not fit in one frame.
            NotConnectedError: If the client is not connected.
            QueueFullError: If too many frames are already waiting to be written.
        """
        return await self.connection.send(frame_type, payload, frame_id)

    async def send_text(self, to: str, text: str) -> int:
        """Send a plain text message."""
        return await self.send(FrameType.TEXT, _json_payload({"to": to, "text": text}))

    async def send_media(self, to: str, media: bytes, media_type: str = "image") -> int:
        """Send an inline media message (base64 in the payload)."""
        payload = _json_payload({
            "to": to,
            "media": base64.b64encode(media).decode("ascii"),
            "type": media_type,
        })
        return await self.send(FrameType.MEDIA, payload)

    async def send_group_message(self, group_id: str, text: str) -> int:
        """Send a text message to a group."""
        return await self.send(FrameType.GROUP, _json_payload({"groupId": group_id, "text": text}))

    async def send_presence(self, online: bool) -> int:
        """Announce online/offline presence."""
        return await self.send(
            FrameType.PRESENCE, _json_payload({"online": online, "lastSeen": _now_ms()})
        )

    async def send_typing(self, to: str, typing: bool) -> int:
        """Send a typing indicator."""
        return await self.send(FrameType.TYPING, _json_payload({"to": to, "typing": typing}))

    async def send_read_receipt(self, message_id: int, sender: str) -> int:
        """Acknowledge that a message was read."""
        return await self.send(
            FrameType.READ_RECEIPT, _json_payload({"messageId": message_id, "from": sender})
        )

    async def send_delivery_receipt(self, message_id: int, sender: str) -> int:
        """Acknowledge that a message was delivered."""
        return await self.send(
            FrameType.DELIVERY_RECEIPT, _json_payload({"messageId": message_id, "from": sender})
        )

    # MARK: - Encryption

    def encrypt_for_peer(self, peer_id: str, payload: Plaintext) -> Envelope:
        """Encrypt a payload under the peer's session (created on first use)."""
        return self.cipher.encrypt(peer_id, payload)

    def decrypt_from_peer(self, peer_id: str, envelope: Envelope) -> Plaintext:
        """
        Verify and decrypt an envelope from a peer.

        Raises:
            UnknownSessionError: If there is no session with the peer.
            IntegrityError: If the envelope MAC does not verify.
        """
        return self.cipher.decrypt(peer_id, envelope)

    async def send_encrypted(self, peer_id: str, payload: Plaintext) -> int:
        """
        Encrypt a payload for a peer and send it as an encrypted-envelope frame.

        Connectivity is checked before sealing, so a send while disconnected
        neither creates a session nor advances its message counter. The
        counter counts sealed envelopes: one rejected afterwards (for example
        as too large for a frame) has still been counted.

        Raises:
            NotConnectedError: If the client is not connected.
            PayloadTooLargeError: If the sealed envelope does not fit in one frame.
        """
        if not self.connection.is_connected:
            raise NotConnectedError(self.connection.state.value)

        envelope = self.encrypt_for_peer(peer_id, payload)
        frame_id = await self.send(FrameType.ENCRYPTED, encode_envelope(envelope, self.local_id))
        logger.debug("Sent envelope to peer %s in frame %d", peer_id, frame_id)
        return frame_id
