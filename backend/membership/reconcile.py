"""
Reconciliation scheduler.

Periodically looks for a peer whose display name we do not know and asks
the cluster about it. The request is broadcast to everyone with the target
named in-band, since the substrate offers no point-to-point channel; only
the named peer answers. A failed broadcast is simply retried next tick.
"""

import asyncio
import logging
from typing import Callable

from config import RECONCILE_INTERVAL
from membership.directory import Directory
from protocol.codec import EncodeError, encode
from protocol.models import Envelope
from substrate.gossip import BroadcastError

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Drives the directory toward knowing every participant's name."""

    def __init__(
        self,
        directory: Directory,
        broadcast: Callable[[bytes], None],
        interval: float = RECONCILE_INTERVAL,
    ) -> None:
        self._directory = directory
        self._broadcast = broadcast
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self._interval

    def tick(self) -> str | None:
        """Run one check. Returns the address a request was sent for, if any."""
        logger.debug("Checking for clients with a missing username...")

        address = self._directory.find_any_incomplete()
        if address is None:
            return None

        logger.debug(f"Sending username request to {address}")
        try:
            self._broadcast(encode(Envelope.identity_request(address)))
        except (BroadcastError, EncodeError) as e:
            logger.error(f"Error requesting missing usernames: {e}")
            return None
        return address

    def start(self) -> None:
        """Start the periodic check on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Reconciliation running every {self._interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciliation stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Reconciliation tick failed: {e}", exc_info=True)
