"""Per-peer session store."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..session import Session, create_session
from ..types import UnknownSessionError

logger = logging.getLogger(__name__)


class SessionStore:
    """
    In-memory map of peer id to Session.

    Sessions never leave the store by reference: every public accessor
    returns a copy. The one exception is locked(), which the envelope cipher
    uses to update a session in place while holding its lock.

    Work on a single peer is serialized by that peer's lock, so two
    concurrent first uses never create two sessions. Different peers do not
    contend beyond the short registry lock. A peer has a lock entry only
    while it has a session, so lookups for unknown peers (such as sender ids
    read off the wire) leave nothing behind.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._peer_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _peer_lock(self, peer_id: str, create: bool) -> Iterator[bool]:
        """
        Hold the peer's current lock.

        Yields False without locking when the peer has no lock entry and
        create is False. A lock dropped by remove() or clear() while we
        waited on it is discarded and the lookup retried.
        """
        while True:
            with self._registry_lock:
                lock = self._peer_locks.get(peer_id)
                if lock is None:
                    if not create:
                        break
                    lock = threading.Lock()
                    self._peer_locks[peer_id] = lock

            with lock:
                if self._peer_locks.get(peer_id) is not lock:
                    continue
                yield True
                return

        yield False

    @contextmanager
    def locked(self, peer_id: str, create: bool = False) -> Iterator[Session]:
        """
        Hold the peer's lock and yield its live session.

        For EnvelopeCipher, which advances the message counter in place. The
        yielded Session is the stored object; callers must not keep it past
        the with block. Everyone else should use get() or get_or_create().

        Args:
            peer_id: Peer identifier.
            create: Create the session if it does not exist yet.

        Raises:
            UnknownSessionError: If no session exists and create is False.
        """
        with self._peer_lock(peer_id, create) as held:
            session = self._sessions.get(peer_id) if held else None
            if session is None:
                if not create:
                    raise UnknownSessionError(peer_id)
                session = create_session()
                self._sessions[peer_id] = session
                logger.info("Created session %s for peer %s", session.session_id, peer_id)
            yield session

    def get_or_create(self, peer_id: str) -> Session:
        """Return the peer's session, creating it on first use."""
        with self.locked(peer_id, create=True) as session:
            return session.copy()

    def get(self, peer_id: str) -> Optional[Session]:
        """Return the peer's session, or None."""
        with self._peer_lock(peer_id, create=False) as held:
            session = self._sessions.get(peer_id) if held else None
            return session.copy() if session is not None else None

    def establish(
        self,
        peer_id: str,
        root_key: bytes,
        session_id: Optional[str] = None,
    ) -> Session:
        """
        Install a session from root key material agreed with the peer.

        Replaces any existing session for the peer.
        """
        session = create_session(root_key=root_key, session_id=session_id)
        with self._peer_lock(peer_id, create=True):
            replaced = peer_id in self._sessions
            self._sessions[peer_id] = session
        logger.info(
            "%s session %s for peer %s",
            "Replaced" if replaced else "Established",
            session.session_id,
            peer_id,
        )
        return session.copy()

    def has_session(self, peer_id: str) -> bool:
        """Check if a session exists for a peer."""
        return peer_id in self._sessions

    def remove(self, peer_id: str) -> bool:
        """Destroy the peer's session and its lock. Returns True if a session existed."""
        with self._peer_lock(peer_id, create=False) as held:
            if not held:
                return False
            removed = self._sessions.pop(peer_id, None)
            with self._registry_lock:
                self._peer_locks.pop(peer_id, None)
        if removed is not None:
            logger.info("Removed session %s for peer %s", removed.session_id, peer_id)
        return removed is not None

    def peer_ids(self) -> List[str]:
        """List peers with a session."""
        return list(self._sessions.keys())

    def clear(self) -> None:
        """Destroy all sessions."""
        with self._registry_lock:
            self._sessions.clear()
            self._peer_locks.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._sessions
