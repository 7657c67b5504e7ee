"""
Operator API: status and pairing endpoints.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.gateway.channels.feishu import FeishuChannel
from core.gateway.manager import ChannelManager
from core.gateway.types import ChannelStatus
from routers.gateway import router, set_channel_manager


class StubSession:
    mode = "websocket"

    def __init__(self, pending=None):
        self._pending = set(pending or [])
        self.paired = set()

    def get_status(self):
        return ChannelStatus.CONNECTED

    def pending_users(self):
        return sorted(self._pending)

    def approve(self, user_id):
        self._pending.discard(user_id)
        if user_id in self.paired:
            return False
        self.paired.add(user_id)
        return True

    def revoke(self, user_id):
        changed = user_id in self.paired
        self.paired.discard(user_id)
        return changed


@pytest.fixture
def session() -> StubSession:
    return StubSession(pending=["ou_bob"])


@pytest.fixture
def client(session):
    manager = ChannelManager({})
    manager.register(FeishuChannel())
    manager._sessions[("feishu", "default")] = session
    set_channel_manager(manager)

    app = FastAPI()
    app.include_router(router)
    yield TestClient(app)
    set_channel_manager(None)


class TestStatus:

    def test_status_lists_sessions(self, client):
        response = client.get("/api/v1/gateway/status")

        assert response.status_code == 200
        body = response.json()
        assert body["enabled"] is True
        assert body["sessions"] == [
            {
                "channel": "feishu",
                "display_name": "Feishu/Lark",
                "account_id": "default",
                "mode": "websocket",
                "status": "connected",
                "pending": 1,
            }
        ]

    def test_status_without_gateway(self):
        set_channel_manager(None)
        app = FastAPI()
        app.include_router(router)

        response = TestClient(app).get("/api/v1/gateway/status")

        assert response.json() == {"enabled": False, "sessions": []}


class TestPairing:

    def test_list_pending(self, client):
        assert client.get("/api/v1/gateway/pairing/feishu/default").json() == ["ou_bob"]

    def test_approve(self, client, session):
        response = client.post("/api/v1/gateway/pairing/feishu/default/approve/ou_bob")

        assert response.status_code == 200
        assert response.json() == {
            "channel": "feishu",
            "account_id": "default",
            "user_id": "ou_bob",
            "changed": True,
        }
        assert session.pending_users() == []

    def test_revoke(self, client):
        client.post("/api/v1/gateway/pairing/feishu/default/approve/ou_bob")

        response = client.post("/api/v1/gateway/pairing/feishu/default/revoke/ou_bob")

        assert response.json()["changed"] is True

    def test_unknown_account_is_404(self, client):
        assert client.get("/api/v1/gateway/pairing/feishu/other").status_code == 404
        assert client.post("/api/v1/gateway/pairing/feishu/other/approve/ou_bob").status_code == 404

    def test_no_gateway_is_503(self):
        set_channel_manager(None)
        app = FastAPI()
        app.include_router(router)

        response = TestClient(app).post("/api/v1/gateway/pairing/feishu/default/approve/ou_bob")

        assert response.status_code == 503
