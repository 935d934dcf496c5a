from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from _fakes import FakeClock  # noqa: E402


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before importing modules that read settings.
    os.environ["AUDIO_DIR"] = str(tmp_dir / "audio")
    os.environ["AUDIO_SINK_BACKEND"] = "memory"
    os.environ["CLOSE_GRACE_SECONDS"] = "0.05"
    os.environ["PUBLIC_BASE_URL"] = "bridge.example.com"

    import importlib

    # Ensure clean import with the test settings.
    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.routes",
        "api.stream_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def runtime():
    from calls.registry import ConnectionRegistry
    from calls.session_store import SessionStore
    from calls.tokens import TokenIssuer
    from integrations.audio_sink import MemoryAudioSink

    clock = FakeClock()
    return {
        "clock": clock,
        "store": SessionStore(clock=clock),
        "tokens": TokenIssuer(ttl_seconds=300),
        "registry": ConnectionRegistry(),
        "sink": MemoryAudioSink(),
    }


@pytest.fixture()
def client(app, runtime):
    # Fresh collaborators per test so sessions never leak between tests.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_session_store] = lambda: runtime["store"]
    app.dependency_overrides[deps.get_token_issuer] = lambda: runtime["tokens"]
    app.dependency_overrides[deps.get_connection_registry] = lambda: runtime["registry"]
    app.dependency_overrides[deps.get_audio_sink] = lambda: runtime["sink"]

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
