"""Entry point for the carrier audio stream bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_session_store, get_token_issuer
from api.routes import api_router
from api.routes import router as session_router
from api.stream_routes import router as stream_router
from calls.errors import CallError
from calls.session_store import SessionStore
from calls.tokens import TokenIssuer
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


def _resolve(app: FastAPI, dependency):
    # Dependency overrides apply to housekeeping as well as to the routes.
    return app.dependency_overrides.get(dependency, dependency)()


async def _housekeeping(tokens: TokenIssuer, store: SessionStore) -> None:
    settings = get_settings()
    while True:
        await asyncio.sleep(settings.sweep_interval_seconds)
        try:
            await tokens.purge_expired()
            if settings.session_retention_seconds is not None:
                await store.evict_ended(timedelta(seconds=settings.session_retention_seconds))
        except Exception:
            LOGGER.exception("Housekeeping sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(
        _housekeeping(_resolve(app, get_token_issuer), _resolve(app, get_session_store))
    )
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Carrier Audio Stream Bridge",
    description="Bidirectional call-session protocol endpoint for telephony carriers.",
    lifespan=lifespan,
)


@app.exception_handler(CallError)
async def call_error_handler(request: Request, exc: CallError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.include_router(session_router)
app.include_router(stream_router)
app.include_router(api_router)
