"""Carrier-facing duplex WebSocket endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import (
    get_audio_sink,
    get_connection_registry,
    get_session_store,
    get_token_issuer,
)
from calls.connection import CallConnection
from calls.errors import MissingParametersError
from calls.registry import ConnectionRegistry
from calls.session_store import SessionStore
from calls.tokens import TokenIssuer
from config.settings import get_settings
from integrations.audio_sink import AudioSink

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/connect")
async def connect(
    websocket: WebSocket,
    store: SessionStore = Depends(get_session_store),
    tokens: TokenIssuer = Depends(get_token_issuer),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    sink: AudioSink = Depends(get_audio_sink),
) -> None:
    callsid = (websocket.query_params.get("callsid") or "").strip()
    if not callsid:
        await websocket.accept()
        await websocket.close(code=MissingParametersError.close_code, reason="Missing CallSid")
        return

    connection = CallConnection(
        websocket,
        session_id=callsid,
        token=websocket.query_params.get("token") or "",
        store=store,
        tokens=tokens,
        registry=registry,
        sink=sink,
        grace_seconds=get_settings().close_grace_seconds,
    )
    await connection.run()
