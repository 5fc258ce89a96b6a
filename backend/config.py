"""Application-wide configuration constants and local identity."""

import logging
import socket

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)


# --- Networking ---
API_HOST = "127.0.0.1"
API_PORT = 8765
HEARTBEAT_INTERVAL = 0.5  # seconds between membership pings
PEER_TIMEOUT = 5.0  # seconds of silence before a peer is considered unreachable
MAX_DATAGRAM_SIZE = 65507  # largest UDP payload over IPv4

# --- Reconciliation ---
RECONCILE_INTERVAL = 15  # seconds between missing-name checks
COMPRESSION_LEVEL = 6
MAX_ENVELOPE_SIZE = 1024 * 1024  # largest decompressed message we accept

# --- Presentation ---
TRANSCRIPT_LIMIT = 500
LOG_LIMIT = 1000


class ConfigurationError(Exception):
    """Required local identity or port is missing or invalid."""


class LocalIdentity(BaseModel):
    """Who this process is: the name shown to others and the address they reach us on."""
    display_name: str
    address: str

    @field_validator("display_name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("display name must not be empty")
        return value


def get_local_ip() -> str:
    """Return the IPv4 address other hosts use to reach us."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # no traffic is sent, only a routing decision
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def load_identity(display_name: str | None, listen_port: int | None,
                  host: str | None = None) -> LocalIdentity:
    """Build the local identity, raising ConfigurationError on missing input."""
    if not listen_port:
        raise ConfigurationError("Listen port is required")
    if not 0 < listen_port < 65536:
        raise ConfigurationError(f"Listen port out of range: {listen_port}")
    if not display_name or not display_name.strip():
        raise ConfigurationError("Username is required")

    host = host or get_local_ip()
    identity = LocalIdentity(display_name=display_name, address=f"{host}:{listen_port}")
    logger.debug(f"Local identity is {identity.display_name} at {identity.address}")
    return identity
