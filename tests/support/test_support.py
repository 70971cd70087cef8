"""Tests for SupportService: per-order threads, message routing, tickets."""
import json
from unittest.mock import MagicMock

import pytest
import redis

from keyshop.core.errors import NotFound
from keyshop.models.order import SUPPORT_CLOSED, SUPPORT_OPEN
from keyshop.models.support_message import SENDER_ADMIN, SENDER_USER
from keyshop.services.orders.service import OrderService
from keyshop.services.support.chat_bus import ChatBus, channel_name, make_event
from keyshop.services.support.service import MAX_MESSAGE_LENGTH, SupportService

ADMIN_ID = 999
BUYER = 1001


@pytest.fixture
def support(db, notifier, bus):
    return SupportService(db, notifier=notifier, bus=bus)


@pytest.fixture
def order(db, make_product):
    product = make_product(keys=["K-1"])
    order = OrderService(db).create(BUYER, product.id)
    db.commit()
    return order


class TestThreads:
    def test_open_alerts_admin_once(self, support, order, sender):
        support.open_thread(order.id, BUYER)
        support.open_thread(order.id, BUYER)

        assert order.support_status == SUPPORT_OPEN
        alerts = sender.to(ADMIN_ID)
        assert alerts == [f"🆘 Новый запрос поддержки!\nЗаказ #{order.id}"]

    def test_open_foreign_order(self, support, order):
        with pytest.raises(NotFound):
            support.open_thread(order.id, 2002)

    def test_close_by_buyer(self, support, order, sender, bus):
        support.open_thread(order.id, BUYER)
        support.close_thread(order.id, BUYER)

        assert order.support_status == SUPPORT_CLOSED
        bus.publish.assert_called_once_with(order.id, SENDER_ADMIN, "Чат закрыт")
        assert sender.to(BUYER) == []

    def test_close_by_admin_tells_buyer(self, support, order, sender):
        support.open_thread(order.id, BUYER)
        support.close_thread(order.id)

        assert order.support_status == SUPPORT_CLOSED
        assert len(sender.to(BUYER)) == 1

    def test_reopen_after_close(self, support, order):
        support.open_thread(order.id, BUYER)
        support.close_thread(order.id, BUYER)
        support.open_thread(order.id, BUYER)
        assert order.support_status == SUPPORT_OPEN
        assert [o.id for o in support.list_open_threads()] == [order.id]


class TestMessages:
    def test_user_message_routed_to_open_thread(self, db, support, order, sender, bus):
        support.open_thread(order.id, BUYER)

        message = support.post_user_message(BUYER, "  ключ не подходит  ")

        assert message.order_id == order.id
        assert message.sender == SENDER_USER
        assert message.text == "ключ не подходит"
        bus.publish.assert_called_once_with(order.id, SENDER_USER, "ключ не подходит", message.created_at)
        assert "ключ не подходит" in sender.to(ADMIN_ID)[-1]

    def test_user_message_without_thread(self, support, order):
        with pytest.raises(NotFound):
            support.post_user_message(BUYER, "hello")

    def test_empty_message(self, support, order):
        support.open_thread(order.id, BUYER)
        with pytest.raises(ValueError):
            support.post_user_message(BUYER, "   ")

    def test_long_message_truncated(self, support, order):
        support.open_thread(order.id, BUYER)
        message = support.post_user_message(BUYER, "x" * (MAX_MESSAGE_LENGTH + 100))
        assert len(message.text) == MAX_MESSAGE_LENGTH

    def test_admin_message_goes_to_buyer(self, support, order, sender):
        support.post_admin_message(order.id, "Попробуйте ещё раз")
        assert sender.to(BUYER) == [f"👨‍💻 Поддержка (заказ #{order.id}):\nПопробуйте ещё раз"]

    def test_admin_message_unknown_order(self, support):
        with pytest.raises(NotFound):
            support.post_admin_message(404, "hello")

    def test_history_in_order(self, support, order):
        support.open_thread(order.id, BUYER)
        support.post_user_message(BUYER, "первое")
        support.post_admin_message(order.id, "второе")
        support.post_user_message(BUYER, "третье")

        history = support.get_chat_history(order.id)
        assert [(m.sender, m.text) for m in history] == [
            (SENDER_USER, "первое"),
            (SENDER_ADMIN, "второе"),
            (SENDER_USER, "третье"),
        ]


class TestTickets:
    def test_bot_ticket(self, support, sender):
        support.create_ticket(BUYER, "buyer", "Test Buyer", "не пришёл ключ")
        alert = sender.to(ADMIN_ID)[0]
        assert "@buyer" in alert
        assert str(BUYER) in alert
        assert "не пришёл ключ" in alert

    def test_web_ticket(self, support, sender):
        support.submit_ticket("Иван", "ivan@example.com", "Где мой ключ?")
        alert = sender.to(ADMIN_ID)[0]
        assert "ivan@example.com" in alert
        assert "Где мой ключ?" in alert

    @pytest.mark.parametrize(
        "name,email,message",
        [("", "a@b.c", "text"), ("Иван", "  ", "text"), ("Иван", "a@b.c", None)],
    )
    def test_web_ticket_requires_all_fields(self, support, sender, name, email, message):
        with pytest.raises(ValueError):
            support.submit_ticket(name, email, message)
        assert sender.sent == []


class TestChatBus:
    def test_channel_name(self):
        assert channel_name(42) == "support-chat:42"

    def test_event_payload(self):
        event = make_event(SENDER_ADMIN, "hi")
        assert event["sender"] == SENDER_ADMIN
        assert event["text"] == "hi"
        assert event["time"]

    def test_publish_json(self):
        client = MagicMock()
        ChatBus(client=client).publish(7, SENDER_USER, "привет")

        channel, payload = client.publish.call_args[0]
        assert channel == "support-chat:7"
        assert json.loads(payload)["text"] == "привет"

    def test_publish_survives_redis_outage(self):
        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError("down")
        ChatBus(client=client).publish(7, SENDER_USER, "привет")
        client.publish.assert_called_once()
