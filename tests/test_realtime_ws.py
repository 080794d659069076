"""End-to-end tests for the HTTP and websocket surface."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import create_app
from utils.settings import ChatSettings


@pytest.fixture
def app(generator):
    return create_app(ChatSettings(follow_up_questions_enabled=False), generator=generator)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def receive_until(ws, frame_type):
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] == frame_type:
            return frames


class TestRest:
    """Test health and session provisioning endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["sessions"] == {"total_sessions": 0, "active_sessions": 0}
        assert "timestamp" in body

    def test_start_session(self, client, app):
        response = client.post("/api/sessions", json={"metadata": {"page": "faq"}})
        assert response.status_code == 201
        body = response.json()
        assert body["websocketUrl"] == f"ws://testserver/ws/{body['sessionId']}"
        assert "expiresAt" in body
        assert app.state.session_store.get(body["sessionId"]).metadata == {"page": "faq"}

    def test_start_session_without_body(self, client):
        assert client.post("/api/sessions").status_code == 201

    def test_context_and_instructions(self, client, app):
        session_id = client.post("/api/sessions").json()["sessionId"]

        assert client.post(f"/api/sessions/{session_id}/context", json={"data": {"system": "X"}}).json() == {
            "success": True
        }
        assert client.post(f"/api/sessions/{session_id}/instructions", json={"content": "Be brief"}).json() == {
            "success": True
        }

        session = app.state.session_store.get(session_id)
        assert session.context == {"system": "X"}
        assert session.system_instructions == "Be brief"

    def test_unknown_session_is_404(self, client):
        assert client.post("/api/sessions/nope/context", json={"data": {"a": 1}}).status_code == 404
        assert client.post("/api/sessions/nope/instructions", json={"content": "x"}).status_code == 404

    def test_bad_payload_is_400(self, client):
        session_id = client.post("/api/sessions").json()["sessionId"]
        response = client.post(f"/api/sessions/{session_id}/context", json={"data": "text"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Context data object required"
        response = client.post(f"/api/sessions/{session_id}/instructions", json={"content": ""})
        assert response.status_code == 400


class TestWebSocket:
    """Test the chat protocol over a real socket."""

    def test_init_and_chat(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "init", "payload": {"clientId": "browser-1"}})
            assert ws.receive_json() == {
                "type": "connected",
                "payload": {"sessionId": "browser-1", "serverVersion": "1.0.0"},
            }

            ws.send_json({"type": "message", "payload": {"content": "Hi", "messageId": "m1"}})
            frames = receive_until(ws, "complete")
            assert [f["type"] for f in frames] == ["status", "stream", "stream", "complete"]
            assert frames[-1]["payload"]["content"] == "Hello world"
            assert ws.receive_json() == {"type": "status", "payload": {"status": "idle"}}

    def test_ping_and_bad_frames(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_text("not json")
            assert ws.receive_json()["payload"]["message"] == "Invalid JSON message"

            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json()["payload"]["message"] == "Invalid websocket frame"

            ws.send_json({"type": "message", "payload": {"content": "Hi", "messageId": "m1"}})
            assert ws.receive_json()["payload"]["code"] == "CONNECTION_ERROR"

    def test_provisioned_session(self, client, generator):
        session_id = client.post("/api/sessions").json()["sessionId"]
        client.post(f"/api/sessions/{session_id}/instructions", json={"content": "Answer in French"})

        with client.websocket_connect(f"/ws/{session_id}") as ws:
            assert ws.receive_json()["payload"]["sessionId"] == session_id
            ws.send_json({"type": "message", "payload": {"content": "Hi", "messageId": "m1"}})
            receive_until(ws, "complete")

        assert generator.calls[0]["system_prompt"].startswith("Answer in French")

    def test_unknown_session_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/does-not-exist"):
                pass
        assert exc_info.value.code == 1008
