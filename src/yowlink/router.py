"""Routing of inbound frames to typed events."""

import logging
from collections import Counter
from typing import Optional

from .crypto import EnvelopeCipher
from .envelope import decode_envelope
from .events import DecryptionFailed, EventChannel, FrameReceived, MessageDecrypted
from .frame import Frame, FrameType
from .models import RouterStats
from .types import YowlinkError

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Maps each inbound frame's type code to an event on the channel.

    Unknown type codes are logged and dropped. Encrypted-envelope frames are
    additionally decrypted with the sender's session and republished as
    MessageDecrypted, or DecryptionFailed when the envelope is rejected.
    Nothing raised here reaches the connection.
    """

    def __init__(self, cipher: EnvelopeCipher, events: EventChannel) -> None:
        self.cipher = cipher
        self.events = events
        self._routed: Counter = Counter()
        self._dropped_unknown = 0
        self._decrypted = 0
        self._failures = 0

    def route(self, frame: Frame) -> None:
        """Publish the events for one decoded frame."""
        try:
            frame_type = FrameType(frame.type)
        except ValueError:
            self._dropped_unknown += 1
            logger.warning("Dropping frame %d with unknown type 0x%02x", frame.id, frame.type)
            return

        self._routed[frame_type.name.lower()] += 1
        self.events.publish(FrameReceived(type=frame_type, frame=frame))

        if frame_type is FrameType.ENCRYPTED:
            self._open_envelope(frame)

    def _open_envelope(self, frame: Frame) -> None:
        peer_id: Optional[str] = None
        try:
            peer_id, envelope = decode_envelope(frame.payload)
            plaintext = self.cipher.decrypt(peer_id, envelope)
        except YowlinkError as exc:
            self._failures += 1
            logger.warning(
                "Could not open envelope in frame %d from peer %s: %s",
                frame.id,
                peer_id,
                exc,
            )
            self.events.publish(
                DecryptionFailed(peer_id=peer_id, reason=str(exc), frame_id=frame.id)
            )
            return

        self._decrypted += 1
        self.events.publish(
            MessageDecrypted(peer_id=peer_id, plaintext=plaintext, frame_id=frame.id)
        )

    def stats(self) -> RouterStats:
        """Counters since creation."""
        return RouterStats(
            routed=dict(self._routed),
            dropped_unknown=self._dropped_unknown,
            decrypted=self._decrypted,
            decryption_failures=self._failures,
        )
