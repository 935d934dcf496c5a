"""Per-connection runner bridging a carrier WebSocket to a call session machine."""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from calls import codec
from calls.errors import CallError, InvalidTokenError, SessionEndedError, UnknownSessionError
from calls.registry import ConnectionRegistry
from calls.schemas import OutboundEnvelope
from calls.session_store import SessionStore
from calls.state_machine import CallSessionMachine
from calls.tokens import TokenIssuer
from integrations.audio_sink import AudioSink

LOGGER = logging.getLogger(__name__)


class CallConnection:
    """Owns one carrier channel from admission to teardown.

    Registered in the ``ConnectionRegistry`` as the session's channel, so an
    out-of-band ``registry.close(...)`` goes through ``close`` below.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        session_id: str,
        token: str,
        store: SessionStore,
        tokens: TokenIssuer,
        registry: ConnectionRegistry,
        sink: AudioSink,
        grace_seconds: float,
    ) -> None:
        self._websocket = websocket
        self._session_id = session_id
        self._token = token
        self._store = store
        self._tokens = tokens
        self._registry = registry
        self._sink = sink
        self._grace_seconds = grace_seconds
        self._machine: CallSessionMachine | None = None
        self._close_timer: asyncio.TimerHandle | None = None
        self._close_task: asyncio.Task | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self._websocket.application_state == WebSocketState.CONNECTED

    async def run(self) -> None:
        await self._websocket.accept()
        try:
            await self._admit()
        except CallError as exc:
            LOGGER.warning("Rejected connection for session %s: %s", self._session_id, exc.detail)
            await self._close_channel(exc.close_code, exc.detail)
            return

        try:
            handle = await self._sink.open(self._session_id)
            self._machine = CallSessionMachine(
                self._store.get(self._session_id),
                self._sink,
                handle,
                clock=self._store.clock,
            )
            self._machine.on_connected()
            await self._receive_loop()
        except WebSocketDisconnect:
            LOGGER.info("WebSocket closed for session %s", self._session_id)
        except Exception as exc:
            LOGGER.exception("Unhandled error on session %s", self._session_id)
            if self._machine is not None:
                await self._machine.fail(str(exc) or type(exc).__name__)
            await self._close_channel(1011, "Internal error")
        finally:
            await self._release()

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        await self._close_channel(code, reason)

    async def _admit(self) -> None:
        if not await self._tokens.consume(self._token, self._session_id):
            raise InvalidTokenError()
        try:
            record = self._store.get(self._session_id)
        except UnknownSessionError:
            raise InvalidTokenError(f"No session for {self._session_id}") from None
        if record.is_ended:
            raise SessionEndedError(f"Session {self._session_id} has already ended")
        await self._registry.bind(self._session_id, self)

    async def _receive_loop(self) -> None:
        assert self._machine is not None
        while not self._closed:
            message = await self._websocket.receive()
            if message["type"] == "websocket.disconnect":
                LOGGER.info(
                    "WebSocket closed for session %s (code=%s)",
                    self._session_id,
                    message.get("code"),
                )
                return
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""

            replies = await self._machine.handle_frame(frame)
            for reply in replies:
                await self._send(reply)
            if self._machine.close_requested and self._close_timer is None:
                self._schedule_close()

    async def _send(self, envelope: OutboundEnvelope) -> None:
        if not self.is_open:
            LOGGER.debug("Dropping %s reply for closed session %s", envelope.event, self._session_id)
            return
        await self._websocket.send_text(codec.encode(envelope))

    def _schedule_close(self) -> None:
        loop = asyncio.get_running_loop()
        self._close_timer = loop.call_later(self._grace_seconds, self._on_grace_elapsed)

    def _on_grace_elapsed(self) -> None:
        self._close_timer = None
        if self._closed:
            return
        self._close_task = asyncio.create_task(self._close_channel(1000, "Call ended"))

    async def _close_channel(self, code: int, reason: str | None) -> None:
        if self._closed:
            return
        self._closed = True
        if self._websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, WebSocketDisconnect):
            # The peer went away between the state check and the close frame.
            LOGGER.debug("Channel for session %s already closed", self._session_id)

    async def _release(self) -> None:
        if self._close_timer is not None:
            self._close_timer.cancel()
            self._close_timer = None
        self._closed = True
        await self._registry.unbind(self._session_id, self)
        if self._machine is not None:
            await self._machine.on_channel_closed()
