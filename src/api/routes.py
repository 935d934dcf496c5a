"""FastAPI routes for session setup, queries and health."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_connection_registry, get_session_store, get_token_issuer
from api.schemas import HangupResponse, HealthResponse, SessionSummaryResponse, SetupResponse
from calls.errors import UnknownSessionError
from calls.registry import ConnectionRegistry
from calls.session_store import SessionStore
from calls.tokens import TokenIssuer
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

router = APIRouter()
api_router = APIRouter(prefix="/api", tags=["calls"])


def _connection_url(session_id: str, token: str) -> str:
    settings = get_settings()
    query = urlencode({"callsid": session_id, "token": token})
    return f"{settings.public_ws_scheme}://{settings.public_base_url}/connect?{query}"


@router.get("/setup", response_model=SetupResponse)
async def setup_session(
    callsid: str = Query(default=""),
    from_number: str = Query(default="", alias="from"),
    to: str = Query(default=""),
    store: SessionStore = Depends(get_session_store),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> SetupResponse:
    record = await store.get_or_create(callsid.strip(), from_number.strip(), to.strip())
    token = await tokens.issue(record.session_id)
    LOGGER.info("Setup completed for session %s", record.session_id)
    return SetupResponse(websocket=_connection_url(record.session_id, token))


@router.get("/health", response_model=HealthResponse)
async def health(
    store: SessionStore = Depends(get_session_store),
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> HealthResponse:
    return HealthResponse(live_connections=len(registry), sessions=len(store))


@api_router.get("/calls/{callsid}", response_model=SessionSummaryResponse)
async def get_session(
    callsid: str,
    store: SessionStore = Depends(get_session_store),
) -> dict:
    return store.get(callsid).to_summary()


@api_router.post("/calls/{callsid}/hangup", response_model=HangupResponse)
async def hangup_session(
    callsid: str,
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> HangupResponse:
    if not await registry.close(callsid, code=1000, reason="Hangup requested"):
        raise UnknownSessionError(callsid)
    return HangupResponse(session_id=callsid)
