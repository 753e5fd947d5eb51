import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from companysync.auth.security import create_session_token
from companysync.main import app
from companysync.models.models import AuditLog, Setting, SupportMessage, utcnow
from companysync.services.support_hub import SupportHub
from conftest import client_for, make_user


def test_user_chat_round_trip(db, member, member_client, site_admin_client):
    resp = member_client.post("/api/support/chat", json={"message": "Help!"})
    assert resp.status_code == 201
    assert resp.json()["from"] == "user"

    resp = site_admin_client.post(
        "/api/admin/support/chat", params={"user_id": member.id}, json={"message": "On it"}
    )
    assert resp.status_code == 201
    assert resp.json()["from"] == "moderator"

    messages = member_client.get("/api/support/chat").json()["messages"]
    assert [m["text"] for m in messages] == ["Help!", "On it"]
    moderator_view = site_admin_client.get("/api/admin/support/chat", params={"user_id": member.id}).json()
    assert len(moderator_view["messages"]) == 2


def test_moderator_routes_need_admin_or_support(db, member, member_client):
    assert member_client.get("/api/admin/support/active-users").status_code == 403
    helper = make_user(db, "helper", role="support")
    assert client_for(helper).get("/api/admin/support/active-users").status_code == 200


def test_old_messages_hidden_and_purged(db, member, member_client, site_admin, site_admin_client):
    db.add(SupportMessage(user_id=member.id, message="ancient", created_at=utcnow() - timedelta(days=4)))
    db.commit()
    member_client.post("/api/support/chat", json={"message": "fresh"})

    messages = member_client.get("/api/support/chat").json()["messages"]
    assert [m["text"] for m in messages] == ["fresh"]
    users = site_admin_client.get("/api/admin/support/active-users").json()["users"]
    assert [u["username"] for u in users] == ["mila"]

    resp = site_admin_client.delete("/api/admin/support/chat/expired")
    assert resp.status_code == 200
    assert resp.json() == {"deleted": 1}
    db.expire_all()
    assert [m.message for m in db.query(SupportMessage).all()] == ["fresh"]
    entry = db.query(AuditLog).one()
    assert entry.action == "purge_support_chat"
    assert entry.details == {"deleted": 1}


class RecordingHub:
    def __init__(self):
        self.sent = []

    async def send(self, user_id, event, payload, moderator=False):
        self.sent.append((user_id, event, payload, moderator))
        return 1


def test_user_message_pushed_to_active_moderator(db, member, member_client, site_admin, monkeypatch):
    db.get(Setting, "activeSupportModeratorId").value = str(site_admin.id)
    db.commit()
    hub = RecordingHub()
    monkeypatch.setattr(app.state, "support_hub", hub)

    member_client.post("/api/support/chat", json={"message": "anyone there?"})

    assert len(hub.sent) == 1
    user_id, event, payload, moderator = hub.sent[0]
    assert (user_id, event, moderator) == (site_admin.id, "support_message", True)
    assert payload["user_id"] == member.id
    assert payload["message"]["text"] == "anyone there?"


def test_no_push_without_active_moderator(db, member_client, monkeypatch):
    hub = RecordingHub()
    monkeypatch.setattr(app.state, "support_hub", hub)
    assert member_client.post("/api/support/chat", json={"message": "hello"}).status_code == 201
    assert hub.sent == []


def test_moderator_reply_pushed_to_user(db, member, site_admin_client, monkeypatch):
    hub = RecordingHub()
    monkeypatch.setattr(app.state, "support_hub", hub)
    site_admin_client.post("/api/admin/support/chat", params={"user_id": member.id}, json={"message": "Hi"})
    assert hub.sent[0][0] == member.id
    assert hub.sent[0][3] is False


def test_websocket_ping(db, site_admin):
    client = TestClient(app)
    with client.websocket_connect(f"/api/support/ws?token={create_session_token(site_admin)}") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_websocket_rejects_bad_token(db):
    with pytest.raises(WebSocketDisconnect):
        with TestClient(app).websocket_connect("/api/support/ws?token=garbage") as ws:
            ws.receive_text()


class FakeSocket:
    def __init__(self):
        self.received = []

    async def send_json(self, data):
        self.received.append(data)


def test_hub_routes_by_user_and_side():
    hub = SupportHub()
    user_ws, mod_ws = FakeSocket(), FakeSocket()

    async def scenario():
        await hub.connect(1, user_ws)
        await hub.connect(1, mod_ws, moderator=True)
        assert await hub.send(1, "support_message", {"n": 1}) == 1
        assert await hub.send(2, "support_message", {"n": 2}) == 0
        await hub.disconnect(1, user_ws)
        assert await hub.send(1, "support_message", {"n": 3}) == 0

    asyncio.run(scenario())
    assert user_ws.received == [{"event": "support_message", "data": {"n": 1}}]
    assert mod_ws.received == []
    assert hub.is_connected(1, moderator=True)
