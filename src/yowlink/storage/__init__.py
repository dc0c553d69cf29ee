"""yowlink storage module."""

from .session_store import SessionStore

__all__ = [
    "SessionStore",
]
