# =============================================================================
# File: tests/test_api.py
# Description: HTTP and WebSocket surface over the in-memory backend
# =============================================================================

import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.core.fastapi_types import MESSAGING_COMPONENTS
from app.server import create_app
from tests.conftest import SCOPE
from tests.fakes.fake_authorization import FakeAuthorization


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_PROVIDER", "local")
    monkeypatch.setenv("STORAGE_LOCAL_PATH", str(tmp_path / "uploads"))
    monkeypatch.setenv("MESSAGING_BACKEND", "memory")
    monkeypatch.setenv("MESSAGING_MAX_BODY_LENGTH", "500")
    monkeypatch.setenv("REDIS_ENABLED", "false")

    application = create_app()
    application.state.authorization = FakeAuthorization(moderators={"mod"})
    with TestClient(application) as test_client:
        response = test_client.post("/scopes", json={"scope_id": SCOPE, "kind": "class"}, headers=as_user("alice"))
        assert response.status_code == 201
        yield test_client


@pytest.fixture
def authorization(client) -> FakeAuthorization:
    return client.app.state.authorization


def send(client, body="hello", user="alice", **extra):
    return client.post(f"/scopes/{SCOPE}/messages", json={"body": body, **extra}, headers=as_user(user))


class TestSystem:

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["backend"] == "memory"
        assert data["messaging"] == {"store": True, "broadcaster": True, "missing": []}
        assert data["relay"]["enabled"] is False

    def test_components_missing_before_startup(self):
        app = create_app()
        assert app.missing_components() == list(MESSAGING_COMPONENTS)
        assert app.missing_components("broadcaster") == ["broadcaster"]

    def test_stream_health(self, client):
        data = client.get("/ws/health").json()
        assert data["status"] == "healthy"
        assert data["relay"] is None

    def test_metrics(self, client):
        send(client)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "campus_messages_appended_total" in response.text


class TestSendAndList:

    def test_identity_required(self, client):
        response = client.post(f"/scopes/{SCOPE}/messages", json={"body": "hi"})
        assert response.status_code == 401

    def test_send_then_list(self, client):
        response = send(client, "hello class")
        assert response.status_code == 201
        message = response.json()
        assert message["id"].isdigit()
        assert message["kind"] == "text"
        assert message["author"]["display_name"] == "Unknown"

        page = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("bob")).json()
        assert [m["id"] for m in page["messages"]] == [message["id"]]
        assert page["next_before"] is None

    def test_same_submission_id_stored_once(self, client):
        submission_id = str(uuid.uuid4())
        first = send(client, "once", submission_id=submission_id).json()
        second = send(client, "once", submission_id=submission_id).json()
        assert first["id"] == second["id"]
        page = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("alice")).json()
        assert len(page["messages"]) == 1

    def test_empty_message_rejected(self, client):
        response = send(client, "   ")
        assert response.status_code == 400
        assert response.json()["type"] == "EmptyMessageError"
        assert response.json()["retryable"] is False

    def test_too_long_rejected(self, client):
        response = send(client, "x" * 501)
        assert response.status_code == 400
        assert response.json()["type"] == "MessageTooLongError"

    def test_unknown_scope(self, client):
        response = client.get("/scopes/nowhere/messages", headers=as_user("alice"))
        assert response.status_code == 404

    def test_not_a_member(self, client, authorization):
        authorization.deny("eve", SCOPE)
        assert send(client, "let me in", user="eve").status_code == 403
        assert client.get(f"/scopes/{SCOPE}/messages", headers=as_user("eve")).status_code == 403

    def test_out_of_order_session_sequence(self, client):
        assert send(client, "second", session_id="s1", seq=2).status_code == 201
        response = send(client, "first", session_id="s1", seq=1)
        assert response.status_code == 409
        assert response.json()["type"] == "OutOfOrderSubmissionError"

    def test_cursor_pagination(self, client):
        ids = [send(client, f"m{i}").json()["id"] for i in range(3)]
        first = client.get(f"/scopes/{SCOPE}/messages", params={"limit": 2}, headers=as_user("alice")).json()
        assert [m["id"] for m in first["messages"]] == ids[1:]
        assert first["next_before"] == ids[1]

        older = client.get(
            f"/scopes/{SCOPE}/messages",
            params={"limit": 2, "before": first["next_before"]},
            headers=as_user("alice"),
        ).json()
        assert [m["id"] for m in older["messages"]] == ids[:1]
        assert older["next_before"] is None


class TestReplies:

    def test_reply_carries_preview(self, client):
        target = send(client, "Quiz moved to Thursday").json()
        reply = send(client, "thanks", user="bob", reply_to_id=target["id"]).json()
        assert reply["reply_preview"]["available"] is True
        assert reply["reply_preview"]["snippet"] == "Quiz moved to Thursday"

        preview = client.get(f"/messages/{reply['id']}/reply-preview", headers=as_user("bob")).json()
        assert preview["message_id"] == target["id"]
        assert preview["kind"] == "text"

    def test_reply_to_missing_target(self, client):
        response = send(client, "re", reply_to_id="123456789")
        assert response.status_code == 404

    def test_preview_of_non_reply_is_null(self, client):
        message = send(client, "plain").json()
        response = client.get(f"/messages/{message['id']}/reply-preview", headers=as_user("alice"))
        assert response.status_code == 200
        assert response.json() is None


class TestDeletes:

    def test_soft_delete_by_author(self, client):
        target = send(client, "oops").json()
        reply = send(client, "?", user="bob", reply_to_id=target["id"]).json()

        assert client.delete(f"/messages/{target['id']}", headers=as_user("bob")).status_code == 403
        response = client.delete(f"/messages/{target['id']}", headers=as_user("alice"))
        assert response.status_code == 200
        assert response.json() == {"message_id": target["id"], "hard": False, "deleted": True}

        page = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("bob")).json()
        assert [m["id"] for m in page["messages"]] == [reply["id"]]
        assert page["messages"][0]["reply_preview"]["available"] is False

    def test_hard_delete_requires_moderator(self, client):
        message = send(client, "spam").json()
        assert client.delete(f"/messages/{message['id']}", params={"hard": True},
                             headers=as_user("alice")).status_code == 403
        response = client.delete(f"/messages/{message['id']}", params={"hard": True}, headers=as_user("mod"))
        assert response.status_code == 200
        assert response.json()["hard"] is True
        assert client.get(f"/messages/{message['id']}/reactions", headers=as_user("mod")).status_code == 404


class TestReactions:

    def test_toggle(self, client):
        message = send(client).json()
        url = f"/messages/{message['id']}/reactions"
        on = client.post(url, json={}, headers=as_user("bob")).json()
        assert on["active"] is True and on["count"] == 1
        off = client.post(url, json={}, headers=as_user("bob")).json()
        assert off["active"] is False and off["count"] == 0

    def test_explicit_state_is_idempotent(self, client):
        message = send(client).json()
        url = f"/messages/{message['id']}/reactions"
        for _ in range(2):
            state = client.post(url, json={"kind": "like", "active": True}, headers=as_user("bob")).json()
        assert state["count"] == 1

        summary = client.get(url, headers=as_user("bob")).json()
        assert summary["likes_count"] == 1
        assert summary["user_liked"] is True
        listed = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("carol")).json()["messages"][0]
        assert listed["likes_count"] == 1
        assert listed["user_liked"] is False

    def test_reaction_on_deleted_message(self, client):
        message = send(client).json()
        client.delete(f"/messages/{message['id']}", headers=as_user("alice"))
        response = client.post(f"/messages/{message['id']}/reactions", json={}, headers=as_user("bob"))
        assert response.status_code == 404


class TestUploads:

    def test_upload_then_send(self, client):
        response = client.post(
            f"/scopes/{SCOPE}/uploads",
            files={"file": ("notes.pdf", b"%PDF-1.4 lecture notes", "application/pdf")},
            headers=as_user("alice"),
        )
        assert response.status_code == 201
        upload = response.json()
        attachment = upload["attachment"]
        assert attachment["kind"] == "file"
        assert attachment["url"].startswith(f"/storage/class-chat/{SCOPE}/")
        assert upload["size_label"] == "22 Bytes"

        served = client.get(attachment["url"])
        assert served.status_code == 200
        assert served.content == b"%PDF-1.4 lecture notes"

        message = send(client, "", attachments=[attachment]).json()
        assert message["kind"] == "file"
        assert message["attachments"][0]["filename"] == "notes.pdf"

    def test_unsupported_type(self, client):
        response = client.post(
            f"/scopes/{SCOPE}/uploads",
            files={"file": ("run.exe", b"MZ", "application/x-msdownload")},
            headers=as_user("alice"),
        )
        assert response.status_code == 400
        assert response.json()["type"] == "UnsupportedAttachmentError"

    def test_reserve_then_seal(self, client):
        reserved = send(client, "diagram", awaiting_attachments=True).json()
        assert reserved["sealed"] is False
        page = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("alice")).json()
        assert page["messages"] == []

        attachment = {"url": "https://cdn.test/d.png", "kind": "image", "filename": "d.png", "size": 10}
        sealed = client.post(f"/messages/{reserved['id']}/seal", json={"attachments": [attachment]},
                             headers=as_user("alice")).json()
        assert sealed["sealed"] is True
        assert sealed["kind"] == "image"
        page = client.get(f"/scopes/{SCOPE}/messages", headers=as_user("alice")).json()
        assert [m["id"] for m in page["messages"]] == [reserved["id"]]

    def test_abandon_reservation(self, client):
        reserved = send(client, "never mind", awaiting_attachments=True).json()
        response = client.post(f"/messages/{reserved['id']}/abandon", headers=as_user("alice"))
        assert response.status_code == 204
        attachment = {"url": "https://cdn.test/d.png", "kind": "image", "filename": "d.png", "size": 10}
        response = client.post(f"/messages/{reserved['id']}/seal", json={"attachments": [attachment]},
                               headers=as_user("alice"))
        assert response.status_code == 404


class TestStream:

    def test_ready_then_events(self, client):
        with client.websocket_connect(f"/scopes/{SCOPE}/stream?user_id=bob") as ws:
            ready = ws.receive_json()
            assert ready["t"] == "ready"
            assert ready["p"]["scope_id"] == SCOPE

            message = send(client, "live").json()
            frame = ws.receive_json()
            assert frame["t"] == "inserted"
            assert frame["p"]["message"]["id"] == message["id"]

            client.post(f"/messages/{message['id']}/reactions", json={}, headers=as_user("carol"))
            frame = ws.receive_json()
            assert frame["t"] == "reacted"
            assert frame["p"]["count"] == 1

            ws.send_json({"t": "ping"})
            assert ws.receive_json()["t"] == "pong"

    def test_identity_required(self, client):
        with client.websocket_connect(f"/scopes/{SCOPE}/stream") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4401

    def test_unknown_scope(self, client):
        with client.websocket_connect("/scopes/nowhere/stream?user_id=bob") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4404

    def test_forbidden(self, client, authorization):
        authorization.deny("eve", SCOPE)
        with client.websocket_connect(f"/scopes/{SCOPE}/stream", headers=as_user("eve")) as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4403
