"""Integration tests for the relay WebSocket endpoint."""

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from relay.messaging.router import OUTCOME_TEXT
from relay.messaging.types import GameOutcome
from relay.server.app import create_app
from relay.server.settings import RelayServerSettings
from relay.server.websocket import AUTH_FAILED_CLOSE_CODE, FORBIDDEN_ORIGIN_CLOSE_CODE
from relay.tests.helpers.sink import RecordingNotificationSink

API_KEY = "integration-key"
HEADERS = {"X-API-Key": API_KEY}
PARAMS = {
    "pontuacaoNecessaria": 12,
    "errosPermitidos": 2,
    "defesa": 4,
    "modo": "branco",
    "velocidadeInicial": 3.0,
    "tempoLimite": 45,
}


def _make_app(sink, **settings_kwargs):
    return create_app(settings=RelayServerSettings(api_key=API_KEY, **settings_kwargs), sink=sink)


def _issue_token(client, identity):
    response = client.post("/tokens", json={"identity": identity}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["token"]


def _sync(ws):
    """Round-trip a PING so every earlier frame has been handled by the server."""
    ws.send_json({"action": "PING"})
    assert ws.receive_json() == {"action": "PONG"}


class TestAuthentication:
    @pytest.fixture
    def sink(self):
        return RecordingNotificationSink()

    @pytest.fixture
    def client(self, sink):
        with TestClient(_make_app(sink)) as c:
            yield c

    def test_valid_token_is_acknowledged(self, client):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_text(f"AUTH:{token}")
            assert ws.receive_json() == {"status": "authenticated"}

            status = client.get("/status", headers=HEADERS).json()
            assert status["bound_identities"] == 1
            assert status["pending_tokens"] == 0

    def test_reused_token_fails_and_closes(self, client):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as first:
            first.send_text(f"AUTH:{token}")
            assert first.receive_json() == {"status": "authenticated"}

            with client.websocket_connect("/ws") as second:
                second.send_text(f"AUTH:{token}")
                assert second.receive_json() == {"status": "auth_failed"}
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    second.receive_text()
                assert exc_info.value.code == AUTH_FAILED_CLOSE_CODE

            # The first connection still speaks for "42".
            _sync(first)
            assert client.get("/status", headers=HEADERS).json()["bound_identities"] == 1

    def test_unknown_token_fails(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("AUTH:not-a-token")
            assert ws.receive_json() == {"status": "auth_failed"}
            with pytest.raises(WebSocketDisconnect):
                ws.receive_text()

    def test_frames_before_auth_are_ignored(self, client, sink):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"action": "PING"})
            ws.send_json({"action": "GAME_RESULT", "result": "success"})
            ws.send_text(f"AUTH:{token}")

            # The PING was dropped, so the first reply is the auth ack.
            assert ws.receive_json() == {"status": "authenticated"}
            _sync(ws)

        assert sink.notifications == []

    def test_malformed_frame_keeps_connection_open(self, client):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_text(f"AUTH:{token}")
            ws.receive_json()
            ws.send_text("{garbage")
            ws.send_json({"action": "DANCE"})
            _sync(ws)


class TestChallengeFlow:
    @pytest.fixture
    def sink(self):
        return RecordingNotificationSink()

    @pytest.fixture
    def client(self, sink):
        with TestClient(_make_app(sink)) as c:
            yield c

    def test_start_challenge_and_report_result(self, client, sink):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_text(f"AUTH:{token}")
            ws.receive_json()

            response = client.post(
                "/challenges",
                json={"identity": "42", "destination": "chan1", "params": PARAMS},
                headers=HEADERS,
            )
            assert response.status_code == 201
            assert response.json() == {"delivered": True}

            assert ws.receive_json() == {
                "action": "START_GAME",
                "pontuacaoNecessaria": 12,
                "errosPermitidos": 2,
                "defesa": 4,
                "modo": "branco",
                "velocidadeInicial": 3.0,
                "tempoLimite": 45.0,
            }

            ws.send_json({"action": "GAME_RESULT", "result": "success"})
            ws.send_json({"action": "GAME_RESULT", "result": "failure"})
            _sync(ws)

        assert sink.notifications == [("42", "chan1", OUTCOME_TEXT[GameOutcome.SUCCESS])]

    def test_result_without_challenge_is_dropped(self, client, sink):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_text(f"AUTH:{token}")
            ws.receive_json()
            ws.send_json({"action": "GAME_RESULT", "result": "failure"})
            _sync(ws)

        assert sink.notifications == []

    def test_disconnect_unbinds_identity(self, client):
        token = _issue_token(client, "42")

        with client.websocket_connect("/ws") as ws:
            ws.send_text(f"AUTH:{token}")
            ws.receive_json()

        response = client.post(
            "/challenges",
            json={"identity": "42", "destination": "chan1", "params": PARAMS},
            headers=HEADERS,
        )
        assert response.status_code == 409


class TestOriginCheck:
    def test_forbidden_origin_is_closed(self):
        app = _make_app(RecordingNotificationSink(), allowed_origins=["https://play.test"])

        with TestClient(app) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws", headers={"origin": "https://evil.test"}):
                    pass
            assert exc_info.value.code == FORBIDDEN_ORIGIN_CLOSE_CODE

    def test_allowed_origin_is_accepted(self):
        app = _make_app(RecordingNotificationSink(), allowed_origins=["https://play.test"])

        with TestClient(app) as client:
            token = _issue_token(client, "42")
            with client.websocket_connect("/ws", headers={"origin": "https://play.test"}) as ws:
                ws.send_text(f"AUTH:{token}")
                assert ws.receive_json() == {"status": "authenticated"}
