"""Envelope encoding and decoding for encrypted frames."""

from dataclasses import dataclass
from typing import Tuple

from .types import (
    ENVELOPE_VERSION,
    IV_SIZE,
    MAC_SIZE,
    EnvelopeError,
)

_SENDER_LENGTH_SIZE = 2
_MIN_SIZE = 1 + _SENDER_LENGTH_SIZE + IV_SIZE + MAC_SIZE


@dataclass(frozen=True)
class Envelope:
    """Authenticated-encrypted payload."""
    iv: bytes  # 16 bytes
    ciphertext: bytes  # variable, multiple of the AES block size
    mac: bytes  # 32 bytes (HMAC-SHA256 over iv + ciphertext)


def encode_envelope(envelope: Envelope, sender_id: str) -> bytes:
    """
    Encode an envelope and its sender id as an encrypted-frame payload.

    Format:
        [0]      version (0x01)
        [1-2]    sender id length (u16, big-endian)
        [3..]    sender id (UTF-8)
        [+16]    iv
        [+32]    mac
        [rest]   ciphertext

    Args:
        envelope: Envelope to encode
        sender_id: Peer id of the sender, used by the receiver to pick the session

    Returns:
        Encoded bytes
    """
    if len(envelope.iv) != IV_SIZE:
        raise EnvelopeError(f"IV must be {IV_SIZE} bytes, got {len(envelope.iv)}")
    if len(envelope.mac) != MAC_SIZE:
        raise EnvelopeError(f"MAC must be {MAC_SIZE} bytes, got {len(envelope.mac)}")

    sender = sender_id.encode("utf-8")
    if len(sender) > 0xFFFF:
        raise EnvelopeError(f"Sender id too long: {len(sender)} bytes")

    return (
        bytes([ENVELOPE_VERSION])
        + len(sender).to_bytes(_SENDER_LENGTH_SIZE, byteorder="big")
        + sender
        + envelope.iv
        + envelope.mac
        + envelope.ciphertext
    )


def decode_envelope(data: bytes) -> Tuple[str, Envelope]:
    """
    Decode an encrypted-frame payload.

    Args:
        data: Encoded envelope bytes

    Returns:
        (sender_id, envelope)

    Raises:
        EnvelopeError: If data is invalid
    """
    if len(data) < _MIN_SIZE:
        raise EnvelopeError(f"Data too short: {len(data)} bytes (minimum {_MIN_SIZE})")

    version = data[0]
    if version != ENVELOPE_VERSION:
        raise EnvelopeError(f"Unknown version: {version}")

    offset = 1
    sender_length = int.from_bytes(data[offset : offset + _SENDER_LENGTH_SIZE], byteorder="big")
    offset += _SENDER_LENGTH_SIZE

    if len(data) < _MIN_SIZE + sender_length:
        raise EnvelopeError(f"Data too short for sender id of {sender_length} bytes")

    try:
        sender_id = data[offset : offset + sender_length].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EnvelopeError("Sender id is not valid UTF-8") from exc
    offset += sender_length

    iv = bytes(data[offset : offset + IV_SIZE])
    offset += IV_SIZE

    mac = bytes(data[offset : offset + MAC_SIZE])
    offset += MAC_SIZE

    ciphertext = bytes(data[offset:])

    return sender_id, Envelope(iv=iv, ciphertext=ciphertext, mac=mac)


def is_envelope(data: bytes) -> bool:
    """
    Check if data looks like an encoded envelope.

    Args:
        data: Bytes to check

    Returns:
        True if data appears to be a valid envelope
    """
    if len(data) < _MIN_SIZE:
        return False

    return data[0] == ENVELOPE_VERSION
