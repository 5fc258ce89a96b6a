"""Pydantic models for the chat broadcast protocol."""

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class MessageKind(IntEnum):
    """What an envelope carries, and therefore which payload field is meaningful."""
    CHAT = 1
    IDENTITY_BATCH = 2
    IDENTITY_REQUEST = 3


class Envelope(BaseModel):
    """
    The unit exchanged over broadcast.

    CHAT carries text in ``body``; IDENTITY_REQUEST carries the address
    being asked about in ``body``; IDENTITY_BATCH carries an
    address -> display name mapping in ``usernames``.
    """
    model_config = ConfigDict(populate_by_name=True)

    kind: MessageKind = Field(alias="type")
    body: str = ""
    usernames: dict[str, str] | None = None

    @classmethod
    def chat(cls, text: str) -> "Envelope":
        return cls(kind=MessageKind.CHAT, body=text)

    @classmethod
    def identity_batch(cls, usernames: dict[str, str]) -> "Envelope":
        return cls(kind=MessageKind.IDENTITY_BATCH, usernames=dict(usernames))

    @classmethod
    def identity_request(cls, address: str) -> "Envelope":
        return cls(kind=MessageKind.IDENTITY_REQUEST, body=address)
