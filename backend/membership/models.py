"""Pydantic models for the membership directory."""

from typing import Protocol

from pydantic import BaseModel

from substrate.models import Node


class IdentityRecord(BaseModel):
    """What we know about one peer. An empty display_name means we have not learned it yet."""
    node: Node
    display_name: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.display_name)

    def get_name(self) -> str:
        """The display name if known, otherwise the peer's transport address."""
        return self.display_name or self.node.address


class RosterEntry(BaseModel):
    """One line of the participant list shown to the user."""
    address: str
    name: str


class Presenter(Protocol):
    """The display surface driven by the directory and router."""

    def refresh_roster(self, entries: list[RosterEntry]) -> None: ...

    def append_transcript_line(self, text: str, display_name: str) -> None: ...

    def append_log_line(self, text: str) -> None: ...
