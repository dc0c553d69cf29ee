"""Models for connection state and status reporting."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class ConnectionState(Enum):
    """Lifecycle state of the server connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class ConnectionStatus:
    """Snapshot of the connection manager."""
    state: ConnectionState
    generation: int
    reconnect_attempts: int
    max_reconnect_attempts: int
    endpoint: Optional[str] = None
    pending_writes: int = 0

    @property
    def connected(self) -> bool:
        """Whether the link is up."""
        return self.state is ConnectionState.CONNECTED


@dataclass
class RouterStats:
    """Counters kept by the message router."""
    routed: Dict[str, int] = field(default_factory=dict)
    dropped_unknown: int = 0
    decrypted: int = 0
    decryption_failures: int = 0


@dataclass
class ClientStatus:
    """Combined status of a chat client."""
    connection: ConnectionStatus
    active_sessions: int
    router: RouterStats
