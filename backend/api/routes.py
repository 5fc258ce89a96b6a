"""REST API routes for the chat node."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from substrate.gossip import BroadcastError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_directory = None
_message_router = None
_chat_view = None
_gossip_node = None


def init_routes(directory, message_router, chat_view, gossip_node=None) -> None:
    """Inject service dependencies into the routes module."""
    global _directory, _message_router, _chat_view, _gossip_node
    _directory = directory
    _message_router = message_router
    _chat_view = chat_view
    _gossip_node = gossip_node


# --- Identity & membership ---

@router.get("/identity")
async def get_identity():
    """Return who this node is."""
    return _directory.identity.model_dump()


@router.get("/roster")
async def get_roster():
    """Return the participant list with resolved names."""
    return {"peers": [e.model_dump() for e in _directory.roster()]}


@router.get("/members")
async def list_members():
    """Return the substrate's raw view of live members."""
    if _gossip_node is None:
        return {"members": []}
    return {"members": [n.model_dump() for n in _gossip_node.members()]}


# --- Chat ---

class SendMessageBody(BaseModel):
    text: str


@router.get("/transcript")
async def get_transcript():
    return {"messages": [line.model_dump() for line in _chat_view.transcript()]}


@router.post("/messages")
async def send_message(body: SendMessageBody):
    """Post a chat message to the room."""
    try:
        sent = _message_router.send_chat(body.text)
    except BroadcastError as e:
        logger.error(f"Failed to send chat message: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "sent" if sent else "ignored"}


# --- Logs ---

@router.get("/logs")
async def get_logs():
    return {"logs": _chat_view.logs()}
