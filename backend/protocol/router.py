"""
Message router: the application side of every broadcast.

Inbound bytes are decoded and dispatched by kind to the directory, the
reconciliation reply path or the transcript. Outbound chat is echoed
locally before it is broadcast.
"""

import logging
from typing import Callable

from config import LocalIdentity
from membership.directory import Directory, EmptyPayloadError
from membership.models import Presenter
from protocol.codec import DecodeError, EncodeError, encode, decode
from protocol.models import Envelope, MessageKind
from substrate.gossip import BroadcastError

logger = logging.getLogger(__name__)


class MessageRouter:
    """Handles inbound broadcasts and sends chat messages."""

    def __init__(
        self,
        identity: LocalIdentity,
        directory: Directory,
        broadcast: Callable[[bytes], None],
        presenter: Presenter,
    ) -> None:
        self._identity = identity
        self._directory = directory
        self._broadcast = broadcast
        self._presenter = presenter

    def on_broadcast(self, origin: str, data: bytes) -> None:
        """Called by the substrate for every broadcast we observe."""
        logger.debug(f"Received {len(data)} bytes from {origin}")
        try:
            envelope = decode(data)
        except DecodeError as e:
            logger.error(f"Failed to receive message from {origin}: {e}")
            return

        if envelope.kind == MessageKind.IDENTITY_BATCH:
            self._handle_identity_batch(origin, envelope)
        elif envelope.kind == MessageKind.IDENTITY_REQUEST:
            self._handle_identity_request(envelope)
        elif envelope.kind == MessageKind.CHAT:
            self._presenter.append_transcript_line(
                envelope.body, self._directory.resolve_name(origin)
            )

    def _handle_identity_batch(self, origin: str, envelope: Envelope) -> None:
        logger.debug(f"Received a broadcast containing usernames from {origin}")
        try:
            self._directory.apply_identity_batch(envelope.usernames)
        except EmptyPayloadError as e:
            logger.error(f"Failed to process received usernames: {e}")

    def _handle_identity_request(self, envelope: Envelope) -> None:
        logger.debug(
            f"Received a broadcast requesting {envelope.body} send usernames, "
            f"my address is {self._identity.address}"
        )
        if envelope.body != self._identity.address:
            return

        # Share everything we know to save the asker further requests
        usernames = self._directory.snapshot_known_identities()
        try:
            self._broadcast(encode(Envelope.identity_batch(usernames)))
        except (BroadcastError, EncodeError) as e:
            logger.error(f"Tried to broadcast usernames but failed: {e}")
            return
        logger.info("Successfully broadcast usernames to the group")

    def send_chat(self, text: str) -> bool:
        """
        Post text to our own transcript and broadcast it.

        Blank text is ignored and returns False. BroadcastError propagates
        to the caller.
        """
        text = text.strip()
        if not text:
            return False

        self._presenter.append_transcript_line(text, self._identity.display_name)
        try:
            data = encode(Envelope.chat(text))
        except EncodeError as e:
            raise BroadcastError(f"Could not encode chat message: {e}") from e
        self._broadcast(data)
        return True
