from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import WebSocketDisconnect

from _fakes import media_frame, start_frame, stop_frame
from calls.records import SessionStatus


def _setup(client, callsid: str = "C1") -> str:
    response = client.get("/setup", params={"callsid": callsid, "from": "+1", "to": "+2"})
    assert response.status_code == 200
    url = urlsplit(response.json()["websocket"])
    return f"{url.path}?{url.query}"


def test_setup_returns_connection_address_with_token(client):
    response = client.get("/setup", params={"callsid": "C1", "from": "+1", "to": "+2"})
    assert response.status_code == 200

    url = urlsplit(response.json()["websocket"])
    query = parse_qs(url.query)
    assert url.scheme == "wss"
    assert url.netloc == "bridge.example.com"
    assert url.path == "/connect"
    assert query["callsid"] == ["C1"]
    assert len(query["token"][0]) >= 22


@pytest.mark.parametrize("params", [{}, {"callsid": "C1", "from": "+1"}, {"callsid": "", "from": "+1", "to": "+2"}])
def test_setup_requires_identifiers(client, runtime, params):
    response = client.get("/setup", params=params)
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required parameters: callsid, from, to"
    assert len(runtime["store"]) == 0


def test_full_call_over_websocket(client, runtime):
    path = _setup(client)

    with client.websocket_connect(path) as ws:
        ws.send_json(start_frame(0))
        start_ack = ws.receive_json()
        assert start_ack["event"] == "start"
        assert start_ack["sequence_number"] == 1
        assert runtime["store"].get("C1").status is SessionStatus.STARTED

        ws.send_json(media_frame(1, chunk=1, payload="QQ==", timestamp="1"))
        media_ack = ws.receive_json()
        assert media_ack["sequence_number"] == 1001
        assert media_ack["media"]["payload"] == "QQ=="

        ws.send_json(stop_frame(2))
        stop_ack = ws.receive_json()
        assert stop_ack["sequence_number"] == 3
        assert runtime["store"].get("C1").status is SessionStatus.STOPPED

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == 1000

    assert runtime["sink"].payloads["C1"] == ["QQ=="]
    assert len(runtime["registry"]) == 0


def test_malformed_frame_gets_error_envelope(client, runtime):
    path = _setup(client)
    with client.websocket_connect(path) as ws:
        ws.send_text("{nope")
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["sequence_number"] == 0
        assert runtime["store"].get("C1").status is SessionStatus.CONNECTED

    assert runtime["store"].get("C1").status is SessionStatus.DISCONNECTED


def test_token_cannot_be_reused(client):
    path = _setup(client)
    with client.websocket_connect(path) as ws:
        ws.send_json(start_frame(0))
        ws.receive_json()

    with client.websocket_connect(path) as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 4001


def test_missing_callsid_is_rejected(client):
    with client.websocket_connect("/connect?token=abc") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
    assert exc_info.value.code == 4000


def test_second_connection_is_rejected(client, runtime):
    first_path = _setup(client)
    second_path = _setup(client)

    with client.websocket_connect(first_path) as first:
        first.send_json(start_frame(0))
        assert first.receive_json()["sequence_number"] == 1

        with client.websocket_connect(second_path) as second:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                second.receive_json()
        assert exc_info.value.code == 4009

        first.send_json(media_frame(1, chunk=1))
        assert first.receive_json()["sequence_number"] == 1001
        assert len(runtime["registry"]) == 1


def test_session_query_and_health(client):
    path = _setup(client)
    with client.websocket_connect(path) as ws:
        ws.send_json(start_frame(0, custom_parameters={"campaign": "spring"}))
        ws.receive_json()
        ws.send_json(media_frame(1, chunk=1))
        ws.receive_json()

        health = client.get("/health").json()
        assert health == {"status": "ok", "live_connections": 1, "sessions": 1}

    summary = client.get("/api/calls/C1").json()
    assert summary["from"] == "+1"
    assert summary["to"] == "+2"
    assert summary["status"] == "disconnected"
    assert summary["duration"] == 0
    assert summary["custom_parameters"] == {"campaign": "spring"}
    assert summary["media_format"] == {"encoding": "pcmu", "sample_rate": 8000, "bit_rate": 64000}
    assert summary["audio_chunks"] == "1 chunks"
    assert [event["kind"] for event in summary["events"]] == ["start", "media"]
    assert summary["events"][1]["sequence_number"] == 1
    assert summary["events"][1]["stream_sid"] == "MZ100"

    assert client.get("/health").json()["live_connections"] == 0


def test_unknown_session_query_is_not_found(client):
    response = client.get("/api/calls/missing")
    assert response.status_code == 404
    assert response.json()["detail"] == "Unknown session: missing"


def test_hangup_closes_live_connection(client, runtime):
    path = _setup(client)
    with client.websocket_connect(path) as ws:
        ws.send_json(start_frame(0))
        ws.receive_json()

        response = client.post("/api/calls/C1/hangup")
        assert response.status_code == 200
        assert response.json() == {"session_id": "C1", "closed": True}

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == 1000

    assert runtime["store"].get("C1").status is SessionStatus.DISCONNECTED
    assert client.post("/api/calls/C1/hangup").status_code == 404


def test_setup_after_call_ended_is_conflict(client):
    path = _setup(client)
    with client.websocket_connect(path) as ws:
        ws.send_json(stop_frame(0))
        ws.receive_json()

    response = client.get("/setup", params={"callsid": "C1", "from": "+1", "to": "+2"})
    assert response.status_code == 409
