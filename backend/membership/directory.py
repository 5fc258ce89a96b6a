"""
Membership directory: who is in the room and what we call them.

Membership itself is authoritative only through substrate reachability
events. Reconciliation data can rename peers we already know about but
never adds or removes them.
"""

import logging
import random
import threading

from config import LocalIdentity
from membership.models import IdentityRecord, Presenter, RosterEntry
from substrate.models import Node

logger = logging.getLogger(__name__)


class EmptyPayloadError(ValueError):
    """A reconciliation message arrived with no usable data."""


class Directory:
    """Thread-safe mapping of peer address to identity record."""

    def __init__(self, identity: LocalIdentity, presenter: Presenter | None = None) -> None:
        self._identity = identity
        self._presenter = presenter
        self._records: dict[str, IdentityRecord] = {}
        self._lock = threading.RLock()

    @property
    def identity(self) -> LocalIdentity:
        return self._identity

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address in self._records

    def get(self, address: str) -> IdentityRecord | None:
        """Return a copy of the record for address, if present."""
        with self._lock:
            record = self._records.get(address)
            return record.model_copy() if record else None

    def addresses(self) -> set[str]:
        with self._lock:
            return set(self._records)

    # --- Substrate membership events ---

    def on_peer_reachable(self, node: Node) -> None:
        """Insert or replace the record for a peer the substrate reports alive."""
        logger.debug(f"Adding a new node: {node.address}")
        record = IdentityRecord(node=node)
        if node.address == self._identity.address:
            # Our own name is known without asking anyone
            record.display_name = self._identity.display_name

        with self._lock:
            self._records[node.address] = record
        self._refresh()

    def on_peer_unreachable(self, node: Node) -> None:
        """Remove a departed peer. Unknown peers are ignored."""
        logger.debug(f"Removing a node: {node.address}")
        with self._lock:
            removed = self._records.pop(node.address, None)
        if removed is None:
            logger.debug(f"Node {node.address} was not in the directory")
        self._refresh()

    # --- Reconciliation ---

    def apply_identity_batch(self, usernames: dict[str, str] | None) -> int:
        """
        Fill in display names for peers already in the directory.

        Addresses we do not already know are ignored. Returns the number
        of records updated; raises EmptyPayloadError for an empty batch.
        """
        if not usernames:
            raise EmptyPayloadError("Received an empty username list")

        logger.debug(f"Received username list containing: {usernames}")
        updated = 0
        with self._lock:
            for address, name in usernames.items():
                record = self._records.get(address)
                if record is None:
                    continue
                if address == self._identity.address:
                    # Our own name comes from configuration, never from peers
                    continue
                if record.display_name != name:
                    logger.info(f"Learned name {name!r} for {address}")
                record.display_name = name
                updated += 1

        self._refresh()
        return updated

    def snapshot_known_identities(self) -> dict[str, str]:
        """All known address -> name pairs, always including ourselves."""
        with self._lock:
            known = {
                address: record.display_name
                for address, record in self._records.items()
                if record.display_name
            }
        known[self._identity.address] = self._identity.display_name
        return known

    def find_any_incomplete(self) -> str | None:
        """Return the address of a random peer whose name is unknown, or None."""
        with self._lock:
            missing = [a for a, record in self._records.items() if not record.complete]
        if not missing:
            return None
        return random.choice(missing)

    # --- Presentation ---

    def resolve_name(self, address: str) -> str:
        """Display name for address, falling back to the address itself."""
        with self._lock:
            record = self._records.get(address)
            if record is None:
                return address
            return record.get_name()

    def roster(self) -> list[RosterEntry]:
        with self._lock:
            return [
                RosterEntry(address=address, name=record.get_name())
                for address, record in sorted(self._records.items())
            ]

    def _refresh(self) -> None:
        if self._presenter is None:
            return
        try:
            self._presenter.refresh_roster(self.roster())
        except Exception as e:
            logger.error(f"Roster refresh failed: {e}")
