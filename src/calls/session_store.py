"""Process-local store of call session records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from calls.errors import MissingParametersError, SessionEndedError, UnknownSessionError
from calls.records import SessionRecord

LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """In-memory store of session records keyed by session id.

    Note: This is a single-process store. For multi-worker deployments, replace
    with Redis or another shared store.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, SessionRecord] = {}
        self.clock = clock

    async def get_or_create(self, session_id: str, from_number: str, to_number: str) -> SessionRecord:
        if not session_id or not from_number or not to_number:
            raise MissingParametersError("Missing required parameters: callsid, from, to")

        async with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                record = SessionRecord(
                    session_id=session_id,
                    from_number=from_number,
                    to_number=to_number,
                    start_time=self.clock(),
                )
                self._sessions[session_id] = record
                LOGGER.info("Created session %s", session_id)
            elif record.is_ended:
                raise SessionEndedError(f"Session {session_id} has already ended")
            return record

    def get(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise UnknownSessionError(session_id)
        return record

    def __len__(self) -> int:
        return len(self._sessions)

    async def evict_ended(self, older_than: timedelta) -> int:
        cutoff = self.clock() - older_than
        async with self._lock:
            expired = [
                session_id
                for session_id, record in self._sessions.items()
                if record.end_time is not None and record.end_time <= cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            LOGGER.info("Evicted %d ended sessions", len(expired))
        return len(expired)
