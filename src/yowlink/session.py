"""Per-peer session state and key derivation.

Sessions use a simplified key-agreement stand-in: root keys come from fresh
random material (or are supplied by an external agreement step) and the
chain key is derived from the root key. There is no Diffie-Hellman exchange
and no forward secrecy; keys never rotate.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.hashes import SHA256

from .types import (
    KEY_SIZE,
    SESSION_ID_SIZE,
    ROOT_KEY_SALT,
    CHAIN_KEY_INFO,
)


@dataclass
class Session:
    """Symmetric key material shared with one peer.

    Attributes:
        session_id: Random hex identifier.
        root_key: 32-byte root key.
        chain_key: 32-byte key the envelope keys are derived from.
        message_counter: Number of envelopes encrypted under this session.
        created_at: Creation time.
    """

    session_id: str
    root_key: bytes
    chain_key: bytes
    message_counter: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    def copy(self) -> "Session":
        """Detached copy safe to hand out."""
        return replace(self)

    def __repr__(self) -> str:
        return (
            f"Session(session_id={self.session_id!r}, "
            f"message_counter={self.message_counter}, created_at={self.created_at!r})"
        )


def derive_root_key(secret: bytes) -> bytes:
    """Derive a root key from random or agreed secret material.

    Args:
        secret: Input keying material (at least 32 bytes).

    Returns:
        32-byte root key.
    """
    if len(secret) < KEY_SIZE:
        raise ValueError(f"Secret must be at least {KEY_SIZE} bytes, got {len(secret)}")

    hkdf = HKDF(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=ROOT_KEY_SALT,
        info=b"",
    )
    return hkdf.derive(secret)


def derive_chain_key(root_key: bytes) -> bytes:
    """Derive the chain key from a root key.

    Args:
        root_key: 32-byte root key.

    Returns:
        32-byte chain key.
    """
    hkdf = HKDF(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=CHAIN_KEY_INFO,
    )
    return hkdf.derive(root_key)


def new_session_id() -> str:
    """Random session identifier."""
    return os.urandom(SESSION_ID_SIZE).hex()


def create_session(root_key: Optional[bytes] = None, session_id: Optional[str] = None) -> Session:
    """Create a session from a root key, or from fresh random material.

    Args:
        root_key: Root key agreed with the peer out of band; random if omitted.
        session_id: Identifier to use; random if omitted.

    Returns:
        New Session with message_counter at 0.
    """
    if root_key is None:
        root_key = derive_root_key(os.urandom(KEY_SIZE))
    elif len(root_key) != KEY_SIZE:
        raise ValueError(f"Root key must be {KEY_SIZE} bytes, got {len(root_key)}")

    return Session(
        session_id=session_id or new_session_id(),
        root_key=bytes(root_key),
        chain_key=derive_chain_key(root_key),
    )
