"""
yowlink - persistent messaging client link

Python implementation of a framed, multiplexed server connection with
per-peer encrypted sessions (AES-256-CBC + HMAC-SHA256).
"""

from .frame import (
    Frame,
    FrameType,
    FrameBuffer,
    encode_frame,
    decode_frame,
    new_frame_id,
    NEED_MORE_DATA,
)
from .envelope import Envelope, encode_envelope, decode_envelope, is_envelope
from .session import Session, create_session, derive_root_key, derive_chain_key
from .crypto import EnvelopeCipher, IntegrityTracker, serialize_plaintext, deserialize_plaintext
from .types import (
    MAX_PAYLOAD_SIZE,
    MAX_FRAME_SIZE,
    YowlinkError,
    LinkConnectionError,
    NotConnectedError,
    QueueFullError,
    MalformedFrameError,
    PayloadTooLargeError,
    InvalidFrameTypeError,
    UnknownSessionError,
    IntegrityError,
    EnvelopeError,
    EncryptionError,
    DecryptionError,
    MaxReconnectError,
)
from .models import (
    ConnectionState,
    ConnectionStatus,
    RouterStats,
    ClientStatus,
)
from .storage import SessionStore
from .queue import WriteQueue, WriteQueueConfig
from .config import Endpoint, ConnectionConfig
from .events import (
    Event,
    Connected,
    Disconnected,
    FrameReceived,
    MessageDecrypted,
    DecryptionFailed,
    MaxReconnectExceeded,
    EventChannel,
    ChannelClosed,
    dispatch_events,
)
from .connection import ConnectionManager, open_tls_stream
from .router import MessageRouter
from .client import ChatClient
from .log import configure_logging

__version__ = "0.1.0"

__all__ = [
    # Frame
    "Frame",
    "FrameType",
    "FrameBuffer",
    "encode_frame",
    "decode_frame",
    "new_frame_id",
    "NEED_MORE_DATA",
    # Envelope
    "Envelope",
    "encode_envelope",
    "decode_envelope",
    "is_envelope",
    # Session
    "Session",
    "create_session",
    "derive_root_key",
    "derive_chain_key",
    # Crypto
    "EnvelopeCipher",
    "IntegrityTracker",
    "serialize_plaintext",
    "deserialize_plaintext",
    # Errors
    "YowlinkError",
    "LinkConnectionError",
    "NotConnectedError",
    "QueueFullError",
    "MalformedFrameError",
    "PayloadTooLargeError",
    "InvalidFrameTypeError",
    "UnknownSessionError",
    "IntegrityError",
    "EnvelopeError",
    "EncryptionError",
    "DecryptionError",
    "MaxReconnectError",
    # Constants
    "MAX_PAYLOAD_SIZE",
    "MAX_FRAME_SIZE",
    # Models
    "ConnectionState",
    "ConnectionStatus",
    "RouterStats",
    "ClientStatus",
    # Storage
    "SessionStore",
    # Queue
    "WriteQueue",
    "WriteQueueConfig",
    # Config
    "Endpoint",
    "ConnectionConfig",
    # Events
    "Event",
    "Connected",
    "Disconnected",
    "FrameReceived",
    "MessageDecrypted",
    "DecryptionFailed",
    "MaxReconnectExceeded",
    "EventChannel",
    "ChannelClosed",
    "dispatch_events",
    # Connection
    "ConnectionManager",
    "open_tls_stream",
    # Router
    "MessageRouter",
    # Client
    "ChatClient",
    # Logging
    "configure_logging",
]
