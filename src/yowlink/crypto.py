"""Envelope encryption and decryption for yowlink sessions."""

import json
import logging
import os
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .envelope import Envelope
from .storage.session_store import SessionStore
from .types import (
    IV_SIZE,
    KEY_SIZE,
    MAC_SIZE,
    CIPHER_KEY_INFO,
    MAC_KEY_INFO,
    DecryptionError,
    EncryptionError,
    IntegrityError,
)

logger = logging.getLogger(__name__)

Plaintext = Union[bytes, str, dict, list]

_KIND_BYTES = 0x00
_KIND_TEXT = 0x01
_KIND_JSON = 0x02

# Integrity failure tracking
INTEGRITY_WINDOW_SECONDS = 60.0
INTEGRITY_ALERT_THRESHOLD = 5


def _derive_key(chain_key: bytes, info: bytes) -> bytes:
    hkdf = HKDF(algorithm=SHA256(), length=KEY_SIZE, salt=None, info=info)
    return hkdf.derive(chain_key)


def _compute_mac(mac_key: bytes, iv: bytes, ciphertext: bytes) -> hmac.HMAC:
    h = hmac.HMAC(mac_key, SHA256())
    h.update(iv)
    h.update(ciphertext)
    return h


def serialize_plaintext(plaintext: Plaintext) -> bytes:
    """
    Serialize a plaintext value, tagging its kind so it round-trips.

    Args:
        plaintext: bytes, str, or a JSON-compatible dict/list

    Returns:
        1-byte kind tag followed by the body
    """
    if isinstance(plaintext, (bytes, bytearray)):
        return bytes([_KIND_BYTES]) + bytes(plaintext)
    if isinstance(plaintext, str):
        return bytes([_KIND_TEXT]) + plaintext.encode("utf-8")
    if isinstance(plaintext, (dict, list)):
        try:
            body = json.dumps(plaintext, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Plaintext is not JSON serializable: {exc}") from exc
        return bytes([_KIND_JSON]) + body.encode("utf-8")
    raise EncryptionError(f"Unsupported plaintext type: {type(plaintext).__name__}")


def deserialize_plaintext(data: bytes) -> Plaintext:
    """Inverse of serialize_plaintext."""
    if not data:
        raise DecryptionError("Empty plaintext")

    kind, body = data[0], data[1:]
    try:
        if kind == _KIND_BYTES:
            return bytes(body)
        if kind == _KIND_TEXT:
            return body.decode("utf-8")
        if kind == _KIND_JSON:
            return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError(f"Plaintext body is corrupt: {exc}") from exc

    raise DecryptionError(f"Unknown plaintext kind: {kind}")


class IntegrityTracker:
    """Counts MAC failures per peer over a sliding window."""

    def __init__(
        self,
        window: float = INTEGRITY_WINDOW_SECONDS,
        threshold: int = INTEGRITY_ALERT_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._threshold = threshold
        self._clock = clock
        self._failures: Dict[str, Deque[float]] = {}

    def record(self, peer_id: str) -> int:
        """Record a failure and return the count inside the window."""
        now = self._clock()
        failures = self._failures.setdefault(peer_id, deque())
        failures.append(now)
        self._prune(failures, now)

        count = len(failures)
        if count >= self._threshold:
            logger.warning(
                "Repeated integrity failures from peer %s: %d in %.0fs (possible tampering or key desync)",
                peer_id,
                count,
                self._window,
            )
        return count

    def count(self, peer_id: str) -> int:
        failures = self._failures.get(peer_id)
        if not failures:
            return 0
        self._prune(failures, self._clock())
        return len(failures)

    def reset(self, peer_id: str) -> None:
        self._failures.pop(peer_id, None)

    def _prune(self, failures: Deque[float], now: float) -> None:
        while failures and now - failures[0] > self._window:
            failures.popleft()


class EnvelopeCipher:
    """
    Encrypt-then-MAC envelopes under per-peer sessions.

    AES-256-CBC with PKCS7 padding for confidentiality, HMAC-SHA256 over
    iv + ciphertext for integrity. Both keys are derived from the session's
    chain key. Decryption verifies the MAC first and never touches the
    ciphertext of an envelope that fails verification.

    Example usage:
        ```python
        store = SessionStore()
        cipher = EnvelopeCipher(store)

        envelope = cipher.encrypt("bob", "hello")
        assert cipher.decrypt("bob", envelope) == "hello"
        ```
    """

    def __init__(
        self,
        sessions: SessionStore,
        integrity_tracker: Optional[IntegrityTracker] = None,
    ) -> None:
        self.sessions = sessions
        self.integrity = integrity_tracker or IntegrityTracker()

    def encrypt(self, peer_id: str, plaintext: Plaintext) -> Envelope:
        """
        Encrypt a plaintext for a peer.

        Creates the peer's session on first use and advances its message
        counter.

        Args:
            peer_id: Recipient peer id
            plaintext: Value to encrypt (bytes, str, or JSON-compatible dict/list)

        Returns:
            Envelope with iv, ciphertext and mac
        """
        data = serialize_plaintext(plaintext)

        with self.sessions.locked(peer_id, create=True) as session:
            cipher_key = _derive_key(session.chain_key, CIPHER_KEY_INFO)
            mac_key = _derive_key(session.chain_key, MAC_KEY_INFO)

            iv = os.urandom(IV_SIZE)

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(data) + padder.finalize()

            encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()

            mac = _compute_mac(mac_key, iv, ciphertext).finalize()

            session.message_counter += 1
            counter = session.message_counter

        logger.debug("Encrypted envelope #%d for peer %s (%d bytes)", counter, peer_id, len(ciphertext))
        return Envelope(iv=iv, ciphertext=ciphertext, mac=mac)

    def decrypt(self, peer_id: str, envelope: Envelope) -> Plaintext:
        """
        Verify and decrypt an envelope from a peer.

        Args:
            peer_id: Sender peer id
            envelope: The received envelope

        Returns:
            The deserialized plaintext

        Raises:
            UnknownSessionError: If no session exists for the peer
            IntegrityError: If the MAC does not verify
            DecryptionError: If the verified ciphertext does not decrypt
        """
        with self.sessions.locked(peer_id) as session:
            cipher_key = _derive_key(session.chain_key, CIPHER_KEY_INFO)
            mac_key = _derive_key(session.chain_key, MAC_KEY_INFO)

        if len(envelope.iv) != IV_SIZE or len(envelope.mac) != MAC_SIZE:
            self.integrity.record(peer_id)
            raise IntegrityError(peer_id)

        try:
            _compute_mac(mac_key, envelope.iv, envelope.ciphertext).verify(envelope.mac)
        except InvalidSignature:
            self.integrity.record(peer_id)
            logger.warning("Dropping envelope from peer %s: MAC mismatch", peer_id)
            raise IntegrityError(peer_id) from None

        try:
            decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(envelope.iv)).decryptor()
            padded = decryptor.update(envelope.ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionError(f"Ciphertext did not decrypt: {exc}") from exc

        return deserialize_plaintext(data)

    def integrity_failures(self, peer_id: str) -> int:
        """Recent MAC failures recorded for a peer."""
        return self.integrity.count(peer_id)
