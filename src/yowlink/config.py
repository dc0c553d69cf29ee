"""Connection configuration for yowlink."""

import ssl
from dataclasses import dataclass, field, replace
from typing import List, Tuple

from .types import (
    CONNECT_TIMEOUT,
    HEARTBEAT_INTERVAL,
    RECONNECT_BASE_DELAY,
    MAX_RECONNECT_ATTEMPTS,
    MAX_FRAME_SIZE,
)


@dataclass(frozen=True)
class Endpoint:
    """A server address."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class ConnectionConfig:
    """Configuration for the server connection."""

    endpoints: List[Endpoint] = field(default_factory=list)
    """Ordered endpoints. The first is primary, the rest are fallbacks."""

    connect_timeout: float = CONNECT_TIMEOUT
    """Seconds allowed for one endpoint; each fallback gets its own timeout."""

    heartbeat_interval: float = HEARTBEAT_INTERVAL
    """Seconds between heartbeat frames while connected."""

    base_delay: float = RECONNECT_BASE_DELAY
    """Reconnect delay for the first attempt; doubles on each further attempt."""

    max_attempts: int = MAX_RECONNECT_ATTEMPTS
    """Reconnect attempts before giving up."""

    max_frame_size: int = MAX_FRAME_SIZE
    """Largest declared frame length accepted from the server."""

    verify_certificates: bool = False
    """Validate the server certificate chain and hostname."""

    read_chunk_size: int = 65536
    """Bytes requested per stream read."""

    @classmethod
    def local(cls, port: int = 5222) -> "ConnectionConfig":
        """Creates configuration for a server on localhost."""
        return cls(endpoints=[Endpoint("127.0.0.1", port)])

    @classmethod
    def from_addresses(cls, addresses: List[Tuple[str, int]]) -> "ConnectionConfig":
        """Creates configuration from (host, port) pairs in priority order."""
        return cls(endpoints=[Endpoint(host, port) for host, port in addresses])

    def with_endpoint(self, host: str, port: int) -> "ConnectionConfig":
        """Appends a fallback endpoint."""
        return replace(self, endpoints=[*self.endpoints, Endpoint(host, port)])

    def with_strict_tls(self) -> "ConnectionConfig":
        """Enables certificate validation."""
        return replace(self, verify_certificates=True)

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff delay in seconds for a 1-based reconnect attempt."""
        return self.base_delay * (2 ** (attempt - 1))

    def ssl_context(self) -> ssl.SSLContext:
        """Builds the TLS context for the configured validation policy."""
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        if not self.verify_certificates:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context
