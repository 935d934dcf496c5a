"""Single-use admission tokens binding a session id to one connection attempt."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

TOKEN_BYTES = 32


@dataclass(frozen=True, slots=True)
class AdmissionToken:
    value: str
    session_id: str
    created_at: float


class TokenIssuer:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = asyncio.Lock()
        self._tokens: dict[str, AdmissionToken] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    async def issue(self, session_id: str) -> str:
        token = AdmissionToken(
            value=secrets.token_urlsafe(TOKEN_BYTES),
            session_id=session_id,
            created_at=self._clock(),
        )
        async with self._lock:
            self._tokens[token.value] = token
        LOGGER.debug("Issued admission token for session %s", session_id)
        return token.value

    async def consume(self, token: str, session_id: str) -> bool:
        """Atomically check and delete a token; only the first caller can succeed."""

        async with self._lock:
            entry = self._tokens.get(token)
            if entry is None or entry.session_id != session_id:
                return False
            del self._tokens[token]
        if self._is_expired(entry):
            LOGGER.info("Rejected expired admission token for session %s", session_id)
            return False
        return True

    async def purge_expired(self) -> int:
        async with self._lock:
            expired = [value for value, entry in self._tokens.items() if self._is_expired(entry)]
            for value in expired:
                del self._tokens[value]
        if expired:
            LOGGER.debug("Purged %d expired admission tokens", len(expired))
        return len(expired)

    def _is_expired(self, entry: AdmissionToken) -> bool:
        return self._clock() - entry.created_at >= self._ttl

    def __len__(self) -> int:
        return len(self._tokens)
