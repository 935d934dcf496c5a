"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. Each collaborator
is a process-wide singleton; tests override the getters.
"""

from __future__ import annotations

from functools import lru_cache

from calls.registry import ConnectionRegistry
from calls.session_store import SessionStore
from calls.tokens import TokenIssuer
from config.settings import get_settings
from integrations.audio_sink import AudioSink, build_audio_sink


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return SessionStore()


@lru_cache(maxsize=1)
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer(ttl_seconds=get_settings().token_ttl_seconds)


@lru_cache(maxsize=1)
def get_connection_registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@lru_cache(maxsize=1)
def get_audio_sink() -> AudioSink:
    settings = get_settings()
    return build_audio_sink(settings.audio_sink_backend, settings.audio_dir)
