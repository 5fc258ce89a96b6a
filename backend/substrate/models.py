"""Pydantic models and listener capabilities for the gossip substrate."""

from typing import Protocol

from pydantic import BaseModel


class Node(BaseModel):
    """A peer process in the gossip cluster, identified by its transport address."""
    address: str  # "host:port"
    last_seen: float = 0.0  # Unix timestamp


class FrameType:
    PING = 0x01
    BROADCAST = 0x02
    LEAVE = 0x03


class MembershipObserver(Protocol):
    """Receives join/leave notifications from the substrate."""

    def on_peer_reachable(self, node: Node) -> None: ...

    def on_peer_unreachable(self, node: Node) -> None: ...


class BroadcastObserver(Protocol):
    """Receives every application broadcast observed by the substrate."""

    def on_broadcast(self, origin: str, data: bytes) -> None: ...
