"""Frame encoding and decoding for the yowlink wire protocol."""

import os
import struct
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple, Union

from .types import (
    LENGTH_PREFIX_SIZE,
    FRAME_HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    MAX_FRAME_SIZE,
    MAX_FRAME_ID,
    InvalidFrameTypeError,
    MalformedFrameError,
    PayloadTooLargeError,
)

_LENGTH = struct.Struct(">H")
_HEADER = struct.Struct(">BII")


class FrameType(IntEnum):
    """Frame type codes."""
    TEXT = 0x01
    MEDIA = 0x02
    GROUP = 0x03
    PRESENCE = 0x04
    TYPING = 0x05
    READ_RECEIPT = 0x06
    DELIVERY_RECEIPT = 0x07
    HEARTBEAT = 0x08
    SYNC = 0x09
    DEVICE_NOTIFICATION = 0x0A
    ENCRYPTED = 0x0B

    @classmethod
    def parse(cls, code: Union[int, "FrameType"]) -> "FrameType":
        """Resolve a type code, raising InvalidFrameTypeError if unknown."""
        try:
            return cls(code)
        except ValueError:
            raise InvalidFrameTypeError(code) from None


@dataclass(frozen=True)
class Frame:
    """One length-prefixed typed unit on the wire."""
    type: int
    id: int
    timestamp: int
    payload: bytes = field(default=b"")

    @classmethod
    def create(
        cls,
        frame_type: int,
        payload: bytes,
        frame_id: Optional[int] = None,
        timestamp: Optional[int] = None,
    ) -> "Frame":
        """Builds a frame, assigning a random id and the current time if omitted."""
        return cls(
            type=int(frame_type),
            id=new_frame_id() if frame_id is None else frame_id,
            timestamp=int(time.time()) if timestamp is None else timestamp,
            payload=bytes(payload),
        )

    @property
    def declared_length(self) -> int:
        """Value of the length prefix for this frame."""
        return FRAME_HEADER_SIZE + len(self.payload)


class _NeedMoreData:
    """Sentinel returned by decode_frame when the buffer holds a partial frame."""

    _instance = None

    def __new__(cls) -> "_NeedMoreData":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NEED_MORE_DATA"


NEED_MORE_DATA = _NeedMoreData()


def new_frame_id() -> int:
    """Random 32-bit frame id."""
    return int.from_bytes(os.urandom(4), byteorder="big")


def encode_frame(frame: Frame) -> bytes:
    """
    Encode a frame to bytes.

    Format (11-byte header + payload):
        [0-1]   length prefix (u16, 9 + len(payload))
        [2]     type (u8)
        [3-6]   id (u32)
        [7-10]  timestamp (u32, unix seconds)
        [11+]   payload

    Args:
        frame: Frame to encode

    Returns:
        Encoded bytes

    Raises:
        PayloadTooLargeError: If the payload does not fit the 16-bit length prefix
        ValueError: If a header field is out of range
    """
    if len(frame.payload) > MAX_PAYLOAD_SIZE:
        raise PayloadTooLargeError(len(frame.payload))
    if not 0 <= frame.type <= 0xFF:
        raise ValueError(f"Frame type out of range: {frame.type}")
    if not 0 <= frame.id <= MAX_FRAME_ID:
        raise ValueError(f"Frame id out of range: {frame.id}")
    if not 0 <= frame.timestamp <= MAX_FRAME_ID:
        raise ValueError(f"Frame timestamp out of range: {frame.timestamp}")

    return (
        _LENGTH.pack(frame.declared_length)
        + _HEADER.pack(frame.type, frame.id, frame.timestamp)
        + frame.payload
    )


def decode_frame(
    data: bytes, max_frame_size: int = MAX_FRAME_SIZE
) -> Union[Tuple[Frame, int], _NeedMoreData]:
    """
    Decode the first frame in a buffer.

    Args:
        data: Buffered stream bytes, starting at a frame boundary
        max_frame_size: Largest declared length accepted

    Returns:
        (frame, bytes consumed), or NEED_MORE_DATA if the frame is incomplete

    Raises:
        MalformedFrameError: If the declared length cannot describe a valid frame
    """
    if len(data) < LENGTH_PREFIX_SIZE:
        return NEED_MORE_DATA

    (length,) = _LENGTH.unpack_from(data, 0)

    if length < FRAME_HEADER_SIZE:
        raise MalformedFrameError(
            f"Declared length {length} is shorter than the {FRAME_HEADER_SIZE}-byte header"
        )
    if length > max_frame_size:
        raise MalformedFrameError(f"Declared length {length} exceeds limit {max_frame_size}")

    total = LENGTH_PREFIX_SIZE + length
    if len(data) < total:
        return NEED_MORE_DATA

    frame_type, frame_id, timestamp = _HEADER.unpack_from(data, LENGTH_PREFIX_SIZE)
    payload = bytes(data[LENGTH_PREFIX_SIZE + FRAME_HEADER_SIZE : total])

    return Frame(type=frame_type, id=frame_id, timestamp=timestamp, payload=payload), total


class FrameBuffer:
    """Accumulates stream bytes and yields complete frames."""

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size

    def feed(self, data: bytes) -> List[Frame]:
        """Append bytes and return every frame now complete (possibly none)."""
        self._buffer.extend(data)
        frames: List[Frame] = []

        while True:
            result = decode_frame(self._buffer, self._max_frame_size)
            if result is NEED_MORE_DATA:
                break
            frame, consumed = result
            del self._buffer[:consumed]
            frames.append(frame)

        return frames

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a complete frame."""
        return len(self._buffer)

    def clear(self) -> None:
        """Drop any partial frame."""
        self._buffer.clear()
