"""
Chat view: the presentation state behind the REST and WebSocket surfaces.

Keeps the current roster plus bounded transcript and log buffers, and
pushes each change to connected WebSocket clients without waiting for
delivery.
"""

import asyncio
import logging
import threading
import time
from collections import deque

from pydantic import BaseModel

from api.websocket import ConnectionManager
from config import LOG_LIMIT, TRANSCRIPT_LIMIT
from membership.models import RosterEntry

logger = logging.getLogger(__name__)


class ChatLine(BaseModel):
    sender: str
    text: str
    timestamp: float


class ChatView:
    """Presenter backed by in-memory buffers and a WebSocket fan-out."""

    def __init__(
        self,
        ws_manager: ConnectionManager | None = None,
        transcript_limit: int = TRANSCRIPT_LIMIT,
        log_limit: int = LOG_LIMIT,
    ) -> None:
        self._ws_manager = ws_manager
        self._roster: list[RosterEntry] = []
        self._transcript: deque[ChatLine] = deque(maxlen=transcript_limit)
        self._logs: deque[str] = deque(maxlen=log_limit)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach to the event loop WebSocket pushes are scheduled on."""
        self._loop = loop

    def unbind(self) -> None:
        self._loop = None

    # --- Presenter ---

    def refresh_roster(self, entries: list[RosterEntry]) -> None:
        with self._lock:
            self._roster = list(entries)
        self._push("roster", {"peers": [e.model_dump() for e in entries]})

    def append_transcript_line(self, text: str, display_name: str) -> None:
        line = ChatLine(sender=display_name, text=text, timestamp=time.time())
        with self._lock:
            self._transcript.append(line)
        self._push("chat", line.model_dump())

    def append_log_line(self, text: str) -> None:
        with self._lock:
            self._logs.append(text)
        self._push("log", {"line": text})

    # --- Queries ---

    def roster(self) -> list[RosterEntry]:
        with self._lock:
            return list(self._roster)

    def transcript(self) -> list[ChatLine]:
        with self._lock:
            return list(self._transcript)

    def logs(self) -> list[str]:
        with self._lock:
            return list(self._logs)

    def _push(self, event: str, data: dict) -> None:
        loop = self._loop
        if self._ws_manager is None or loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self._ws_manager.broadcast(event, data), loop)


class ViewLogHandler(logging.Handler):
    """Mirrors log records into the view's log buffer."""

    def __init__(self, view: ChatView, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._view = view

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._view.append_log_line(self.format(record))
        except Exception:
            self.handleError(record)
