"""
UDP gossip membership substrate.

Pings every known member on a short heartbeat, reports peers that go
quiet as unreachable, and fans application broadcasts out to every
live member. Membership spreads transitively: each ping carries the
sender's view of the cluster, so joining through a single seed is enough.
"""

import asyncio
import json
import logging
import socket
import struct
import time

from config import HEARTBEAT_INTERVAL, MAX_DATAGRAM_SIZE, PEER_TIMEOUT
from substrate.models import BroadcastObserver, FrameType, MembershipObserver, Node

logger = logging.getLogger(__name__)

# --- Wire protocol helpers ---

HEADER_FORMAT = "!BH"  # 1-byte frame type + 2-byte origin length (big-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)


class BroadcastError(Exception):
    """The substrate refused or failed to send a broadcast."""


class FrameError(ValueError):
    """A datagram could not be parsed as a gossip frame."""


def pack_frame(frame_type: int, origin: str, body: bytes = b"") -> bytes:
    """Build a type-origin-body frame."""
    origin_bytes = origin.encode("utf-8")
    header = struct.pack(HEADER_FORMAT, frame_type, len(origin_bytes))
    return header + origin_bytes + body


def unpack_frame(data: bytes) -> tuple[int, str, bytes]:
    """Split a frame into (type, origin, body)."""
    if len(data) < HEADER_SIZE:
        raise FrameError(f"Frame too short: {len(data)} bytes")
    frame_type, origin_len = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
    end = HEADER_SIZE + origin_len
    if len(data) < end:
        raise FrameError("Frame truncated inside origin address")
    try:
        origin = data[HEADER_SIZE:end].decode("utf-8")
    except UnicodeDecodeError as e:
        raise FrameError(f"Origin address is not UTF-8: {e}") from e
    if not origin:
        raise FrameError("Frame has no origin address")
    return frame_type, origin, data[end:]


def parse_address(address: str) -> tuple[str, int]:
    """Split "host:port" into a socket address tuple."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Not a host:port address: {address!r}")
    return host, int(port)


class GossipProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol feeding received frames to a GossipNode."""

    def __init__(self, node: "GossipNode"):
        self.node = node

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            frame_type, origin, body = unpack_frame(data)
        except FrameError as e:
            logger.debug(f"Ignoring invalid gossip frame from {addr}: {e}")
            return
        self.node.handle_frame(frame_type, origin, body)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Gossip UDP error: {exc}")


class GossipNode:
    """Tracks live cluster members and delivers broadcasts between them."""

    def __init__(
        self,
        address: str,
        listen_port: int,
        seeds: list[str] | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        peer_timeout: float = PEER_TIMEOUT,
    ) -> None:
        self.address = address
        self._listen_port = listen_port
        self._seeds = {s for s in (seeds or []) if s and s != address}
        self._heartbeat_interval = heartbeat_interval
        self._peer_timeout = peer_timeout

        self._members: dict[str, Node] = {}
        self._candidates: dict[str, float] = {}  # address -> time first heard of
        self._status_listeners: list[MembershipObserver] = []
        self._broadcast_listeners: list[BroadcastObserver] = []

        self._transport: asyncio.DatagramTransport | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None

    def add_status_listener(self, listener: MembershipObserver) -> None:
        """Register a listener for peer reachable/unreachable events."""
        self._status_listeners.append(listener)

    def add_broadcast_listener(self, listener: BroadcastObserver) -> None:
        """Register a listener for inbound broadcasts."""
        self._broadcast_listeners.append(listener)

    def members(self) -> list[Node]:
        """Return the currently live members, ourselves included."""
        return list(self._members.values())

    @property
    def running(self) -> bool:
        return self._transport is not None

    async def start(self) -> None:
        """Bind the UDP socket and start the heartbeat and cleanup loops."""
        logger.info(f"Starting gossip on UDP port {self._listen_port}")

        loop = asyncio.get_running_loop()

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setblocking(False)
        try:
            sock.bind(("0.0.0.0", self._listen_port))
        except OSError:
            sock.close()
            raise

        transport, _ = await loop.create_datagram_endpoint(
            lambda: GossipProtocol(self),
            sock=sock,
        )
        self._transport = transport

        # We are a member of our own cluster from the start
        self._mark_alive(self.address, time.time())

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(f"Gossip started as {self.address}, seeds: {sorted(self._seeds) or 'none'}")

    async def stop(self) -> None:
        """Announce our departure and stop the gossip loops."""
        if self._transport:
            frame = pack_frame(FrameType.LEAVE, self.address)
            self._send_all(frame, self._remote_members())
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self._cleanup_task:
            self._cleanup_task.cancel()
        if self._transport:
            self._transport.close()
            self._transport = None
        logger.info("Gossip stopped")

    def broadcast(self, data: bytes) -> None:
        """Send application bytes to every live member. Best effort, unordered."""
        if self._transport is None:
            raise BroadcastError("Gossip substrate is not running")

        frame = pack_frame(FrameType.BROADCAST, self.address, data)
        if len(frame) > MAX_DATAGRAM_SIZE:
            raise BroadcastError(
                f"Broadcast of {len(frame)} bytes exceeds datagram limit {MAX_DATAGRAM_SIZE}"
            )

        targets = self._remote_members()
        failures = self._send_all(frame, targets)
        if targets and failures == len(targets):
            raise BroadcastError(f"Broadcast failed for all {len(targets)} members")
        logger.debug(f"Broadcast {len(data)} bytes to {len(targets) - failures} members")

    def handle_frame(self, frame_type: int, origin: str, body: bytes) -> None:
        """Process one frame received from origin."""
        if origin == self.address:
            return

        if frame_type == FrameType.LEAVE:
            self._candidates.pop(origin, None)
            self._mark_dead(origin)
            return

        # Hearing anything from a peer proves it is alive
        self._mark_alive(origin, time.time())

        if frame_type == FrameType.PING:
            self._learn_members(body)
        elif frame_type == FrameType.BROADCAST:
            for listener in list(self._broadcast_listeners):
                try:
                    listener.on_broadcast(origin, body)
                except Exception as e:
                    logger.error(f"Broadcast listener error: {e}", exc_info=True)
        else:
            logger.debug(f"Ignoring unknown frame type {frame_type:#x} from {origin}")

    def ping_targets(self) -> list[str]:
        """Addresses to ping this round: members, candidates and seeds."""
        targets = set(self._members) | set(self._candidates) | self._seeds
        targets.discard(self.address)
        return sorted(targets)

    def send_heartbeat(self) -> None:
        if self._transport is None:
            return
        body = json.dumps(sorted(self._members)).encode("utf-8")
        frame = pack_frame(FrameType.PING, self.address, body)
        self._send_all(frame, self.ping_targets())

    def prune(self, now: float) -> list[Node]:
        """Drop members and candidates we have not heard from in time."""
        stale = [
            node for address, node in self._members.items()
            if address != self.address and now - node.last_seen > self._peer_timeout
        ]
        for node in stale:
            self._mark_dead(node.address)

        for address, learned_at in list(self._candidates.items()):
            if now - learned_at > self._peer_timeout:
                del self._candidates[address]

        return stale

    def _learn_members(self, body: bytes) -> None:
        try:
            addresses = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Ignoring malformed member list: {e}")
            return
        if not isinstance(addresses, list):
            return

        now = time.time()
        for address in addresses:
            if not isinstance(address, str) or address == self.address:
                continue
            if address not in self._members:
                self._candidates.setdefault(address, now)

    def _mark_alive(self, address: str, now: float) -> None:
        node = self._members.get(address)
        if node is not None:
            node.last_seen = now
            return

        self._candidates.pop(address, None)
        node = Node(address=address, last_seen=now)
        self._members[address] = node
        logger.info(f"Peer reachable: {address}")
        self._notify_status(node, alive=True)

    def _mark_dead(self, address: str) -> None:
        node = self._members.pop(address, None)
        if node is None:
            return
        logger.info(f"Peer unreachable: {address}")
        self._notify_status(node, alive=False)

    def _notify_status(self, node: Node, alive: bool) -> None:
        for listener in list(self._status_listeners):
            try:
                if alive:
                    listener.on_peer_reachable(node)
                else:
                    listener.on_peer_unreachable(node)
            except Exception as e:
                logger.error(f"Status listener error: {e}", exc_info=True)

    def _remote_members(self) -> list[str]:
        return [address for address in self._members if address != self.address]

    def _send_all(self, frame: bytes, addresses: list[str]) -> int:
        """Send frame to each address; returns the number of failed sends."""
        failures = 0
        for address in addresses:
            try:
                self._transport.sendto(frame, parse_address(address))
            except (OSError, ValueError) as e:
                failures += 1
                logger.debug(f"Send to {address} failed: {e}")
        return failures

    async def _heartbeat_loop(self) -> None:
        """Periodically ping every known address."""
        while True:
            try:
                self.send_heartbeat()
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")

            await asyncio.sleep(self._heartbeat_interval)

    async def _cleanup_loop(self) -> None:
        """Report peers that have gone quiet."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            self.prune(time.time())
