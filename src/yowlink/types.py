"""Constants and error types for yowlink."""


# Frame constants
LENGTH_PREFIX_SIZE = 2
FRAME_HEADER_SIZE = 9  # type (1) + id (4) + timestamp (4)
MAX_FRAME_LENGTH = 0xFFFF
MAX_PAYLOAD_SIZE = MAX_FRAME_LENGTH - FRAME_HEADER_SIZE  # 65526
MAX_FRAME_SIZE = 16 * 1024 * 1024  # 16 MiB policy limit
MAX_FRAME_ID = 0xFFFFFFFF

# Envelope constants
ENVELOPE_VERSION = 0x01
IV_SIZE = 16
MAC_SIZE = 32
KEY_SIZE = 32
SESSION_ID_SIZE = 16

# Key derivation constants
ROOT_KEY_SALT = b"Yowlink-v1-root"
CHAIN_KEY_INFO = b"Yowlink-v1-chain"
CIPHER_KEY_INFO = b"Yowlink-v1-cipher"
MAC_KEY_INFO = b"Yowlink-v1-mac"

# Connection defaults
CONNECT_TIMEOUT = 30.0
HEARTBEAT_INTERVAL = 30.0
RECONNECT_BASE_DELAY = 1.0
MAX_RECONNECT_ATTEMPTS = 5


# Exception types
class YowlinkError(Exception):
    """Base exception for yowlink errors."""
    pass


class LinkConnectionError(YowlinkError, ConnectionError):
    """Transport-level failure (timeout, refused, TLS error)."""
    pass


class NotConnectedError(YowlinkError):
    """Send attempted while the connection is not established."""

    def __init__(self, state: str = "disconnected") -> None:
        self.state = state
        super().__init__(f"Not connected (state: {state})")


class QueueFullError(YowlinkError):
    """Too many frames are waiting for the writer."""

    def __init__(self, size: int) -> None:
        self.size = size
        super().__init__(f"Write queue is full ({size} frames)")


class MalformedFrameError(YowlinkError):
    """The inbound stream carried a frame that cannot be trusted."""
    pass


class PayloadTooLargeError(YowlinkError):
    """Payload exceeds what a single frame can carry."""

    def __init__(self, size: int, max_size: int = MAX_PAYLOAD_SIZE) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(f"Payload too large: {size} bytes (max {max_size})")


class InvalidFrameTypeError(YowlinkError, ValueError):
    """Unknown frame type code supplied by a caller."""

    def __init__(self, type_code: int) -> None:
        self.type_code = type_code
        super().__init__(f"Invalid frame type: {type_code!r}")


class UnknownSessionError(YowlinkError):
    """No session exists for the peer."""

    def __init__(self, peer_id: str) -> None:
        self.peer_id = peer_id
        super().__init__(f"No session for peer: {peer_id}")


class IntegrityError(YowlinkError):
    """Envelope MAC did not verify."""

    def __init__(self, peer_id: str) -> None:
        self.peer_id = peer_id
        super().__init__(f"Envelope MAC mismatch for peer: {peer_id}")


class EnvelopeError(YowlinkError):
    """Envelope encoding/decoding failed."""
    pass


class EncryptionError(YowlinkError):
    """Encryption failed."""
    pass


class DecryptionError(YowlinkError):
    """Decryption failed after the MAC verified."""
    pass


class MaxReconnectError(YowlinkError):
    """Reconnection gave up after the configured number of attempts."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Max reconnection attempts reached: {attempts}")
