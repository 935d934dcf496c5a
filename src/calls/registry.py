"""Registry of live duplex channels, at most one per session id."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from calls.errors import AlreadyBoundError

LOGGER = logging.getLogger(__name__)


class Channel(Protocol):
    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._channels: dict[str, Any] = {}

    async def bind(self, session_id: str, channel: Channel) -> None:
        async with self._lock:
            if session_id in self._channels:
                raise AlreadyBoundError(f"Session {session_id} already has a live connection")
            self._channels[session_id] = channel
        LOGGER.info("Bound connection for session %s", session_id)

    async def unbind(self, session_id: str, channel: Channel) -> bool:
        # Only the channel that owns the entry may remove it.
        async with self._lock:
            if self._channels.get(session_id) is not channel:
                return False
            del self._channels[session_id]
        LOGGER.info("Released connection for session %s", session_id)
        return True

    def get(self, session_id: str) -> Channel | None:
        return self._channels.get(session_id)

    async def close(self, session_id: str, code: int = 1000, reason: str | None = None) -> bool:
        """Close the live channel for a session out of band."""

        channel = self.get(session_id)
        if channel is None:
            return False
        LOGGER.info("Closing connection for session %s (code=%s)", session_id, code)
        await channel.close(code=code, reason=reason)
        return True

    def __len__(self) -> int:
        return len(self._channels)
