from __future__ import annotations

import time

from fastapi.testclient import TestClient

from calls.session_store import SessionStore
from calls.tokens import TokenIssuer


class _BrokenEvictionStore(SessionStore):
    def __init__(self) -> None:
        super().__init__()
        self.evict_calls = 0

    async def evict_ended(self, older_than):
        self.evict_calls += 1
        raise RuntimeError("eviction backend unavailable")


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_sweeper_purges_expired_tokens_and_survives_failing_sweeps(app, monkeypatch):
    import api.dependencies as deps
    import config.settings as config_settings

    settings = config_settings.get_settings()
    monkeypatch.setattr(settings, "sweep_interval_seconds", 0.01)
    monkeypatch.setattr(settings, "session_retention_seconds", 60.0)

    tokens = TokenIssuer(ttl_seconds=0.05)
    store = _BrokenEvictionStore()
    app.dependency_overrides[deps.get_token_issuer] = lambda: tokens
    app.dependency_overrides[deps.get_session_store] = lambda: store

    try:
        with TestClient(app) as client:
            assert _wait_for(lambda: store.evict_calls >= 1)
            response = client.get("/setup", params={"callsid": "C1", "from": "+1", "to": "+2"})
            assert response.status_code == 200

            assert _wait_for(lambda: len(tokens) == 0)
            assert store.evict_calls >= 2
    finally:
        app.dependency_overrides.clear()
