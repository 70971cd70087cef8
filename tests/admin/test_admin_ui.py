"""Tests for the admin UI: login, key upload, support pages."""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import RedisError
from starlette.websockets import WebSocketDisconnect

from keyshop.admin import session as admin_session
from keyshop.admin import ui
from keyshop.db.session import get_db
from keyshop.main import app
from keyshop.models.order import SUPPORT_CLOSED, SUPPORT_OPEN
from keyshop.services.keys.service import KeyStoreService
from keyshop.services.orders.service import OrderService

BUYER = 1001


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def expire(self, key, ttl):
        self.ttls[key] = ttl

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def client(db, monkeypatch, redis_client):
    def override_db():
        yield db

    monkeypatch.setattr(admin_session.session_store, "client", redis_client)
    monkeypatch.setattr(ui, "check_login_rate_limit", lambda ip: True)
    monkeypatch.setattr(ui, "reset_login_attempts", lambda ip: None)
    app.dependency_overrides[get_db] = override_db
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()


@pytest.fixture
def logged_in(client):
    resp = client.post("/admin-ui/login", data={"username": "owner", "password": "s3cret-pass-for-tests"})
    assert resp.status_code == 303
    assert resp.headers["location"] == "/admin-ui"
    return client


class TestLogin:
    def test_pages_require_login(self, client):
        for path in ("/admin-ui", "/admin-ui/keys", "/admin-ui/support"):
            resp = client.get(path)
            assert resp.status_code == 303
            assert resp.headers["location"] == "/admin-ui/login"

    def test_wrong_password(self, client):
        resp = client.post("/admin-ui/login", data={"username": "owner", "password": "nope"})
        assert resp.headers["location"] == "/admin-ui/login?error=1"
        assert client.get("/admin-ui").status_code == 303

    def test_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(ui, "check_login_rate_limit", lambda ip: False)
        resp = client.post("/admin-ui/login", data={"username": "owner", "password": "s3cret-pass-for-tests"})
        assert resp.headers["location"] == "/admin-ui/login?error=rate_limit"

    def test_dashboard(self, logged_in, make_product):
        make_product(keys=["K-1"])
        resp = logged_in.get("/admin-ui")
        assert resp.status_code == 200
        assert "Minecraft Java" in resp.text

    def test_logout(self, logged_in, redis_client):
        logged_in.get("/admin-ui/logout")
        assert logged_in.get("/admin-ui").status_code == 303
        assert redis_client.data == {}

    def test_session_ttl_slides(self, logged_in, redis_client):
        [key] = redis_client.data
        assert key.startswith("keyshop:admin-session:")
        redis_client.ttls[key] = 5

        assert logged_in.get("/admin-ui").status_code == 200
        assert redis_client.ttls[key] == admin_session.session_store.ttl_seconds


class TestKeys:
    def test_upload(self, logged_in, db, make_product):
        product = make_product(keys=["K-1"])

        resp = logged_in.post("/admin-ui/keys", data={"product_id": product.id, "keys": "K-1\nK-2\n\n K-3 \n"})

        assert resp.status_code == 303
        assert resp.headers["location"] == "/admin-ui/keys?added=2&duplicates=1"
        assert KeyStoreService(db).count_free(product.id) == 3
        page = logged_in.get(resp.headers["location"])
        assert "K-3" in page.text

    def test_unknown_product(self, logged_in):
        resp = logged_in.post("/admin-ui/keys", data={"product_id": 404, "keys": "K-1"})
        assert resp.status_code == 404


class TestSupport:
    @pytest.fixture
    def open_order(self, db, make_product):
        product = make_product(keys=["K-1"])
        orders = OrderService(db)
        order = orders.create(BUYER, product.id)
        orders.update(order.id, support_status=SUPPORT_OPEN)
        db.commit()
        return order

    def test_inbox_lists_open_threads(self, logged_in, open_order):
        resp = logged_in.get("/admin-ui/support")
        assert resp.status_code == 200
        assert f"/admin-ui/chat/{open_order.id}" in resp.text

    def test_chat_page(self, logged_in, open_order):
        assert logged_in.get(f"/admin-ui/chat/{open_order.id}").status_code == 200
        assert logged_in.get("/admin-ui/chat/404").status_code == 404

    def test_empty_reply_rejected(self, logged_in, open_order):
        resp = logged_in.post(f"/admin-ui/chat/{open_order.id}/send", data={"text": "   "})
        assert resp.headers["location"] == f"/admin-ui/chat/{open_order.id}?error=empty"

    def test_reply_and_close(self, logged_in, db, open_order, monkeypatch, notifier, bus):
        monkeypatch.setattr(ui, "SupportService", lambda session: _support(session, notifier, bus))

        resp = logged_in.post(f"/admin-ui/chat/{open_order.id}/send", data={"text": "Попробуйте ещё раз"})
        assert resp.headers["location"] == f"/admin-ui/chat/{open_order.id}"

        resp = logged_in.post(f"/admin-ui/chat/{open_order.id}/close")
        assert resp.headers["location"] == "/admin-ui/support"
        db.refresh(open_order)
        assert open_order.support_status == SUPPORT_CLOSED


def _support(db, notifier, bus):
    from keyshop.services.support.service import SupportService

    return SupportService(db, notifier=notifier, bus=bus)


class TestChatSocket:
    def test_requires_login(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/admin-ui/chat/1/ws") as ws:
                ws.receive_text()
        assert exc.value.code == 1008

    def test_relay_failure_is_collected(self, logged_in, monkeypatch):
        async def broken_listen(order_id):
            raise RedisError("connection refused")
            yield  # pragma: no cover

        monkeypatch.setattr(ui.chat_bus, "listen", broken_listen)
        with patch.object(ui, "logger") as logger:
            with logged_in.websocket_connect("/admin-ui/chat/1/ws"):
                pass

        logger.warning.assert_called_once_with(
            "chat_ws_relay_failed", extra={"order_id": 1, "error": "connection refused"}
        )
