"""Tests for ShopService: buy, payment check, key delivery and races."""
from unittest.mock import patch

import pytest

from keyshop.core.errors import AlreadyUsed, GatewayError, NotFound, OutOfStock
from keyshop.models.license_key import LicenseKey
from keyshop.models.order import ORDER_CANCELED, ORDER_PAID, ORDER_PENDING, Order
from keyshop.services.keys.service import KeyStoreService
from keyshop.services.shop.outcomes import SettlementOutcome
from keyshop.services.shop.service import ShopService

ADMIN_ID = 999
BUYER = 1001


@pytest.fixture
def shop(db, gateway, notifier):
    return ShopService(db, gateway=gateway, notifier=notifier)


class TestBuy:
    def test_opens_payment(self, db, shop, gateway, make_product):
        product = make_product(keys=["DEMO-KEY-12345"])

        result = shop.buy(BUYER, product.id)

        assert result.order.status == ORDER_PENDING
        assert result.order.payment_id == "pay-1"
        assert result.confirmation_url == "https://yoomoney.ru/checkout/pay-1"
        created = gateway.created[0]
        assert created["amount"] == 1999
        assert created["description"] == "Покупка: Minecraft Java"
        assert created["metadata"] == {"kind": "order", "order_id": result.order.id}
        # ключ ещё не занят: резерв только после оплаты
        assert KeyStoreService(db).count_free(product.id) == 1

    def test_out_of_stock_creates_nothing(self, db, shop, gateway, make_product):
        product = make_product()

        with pytest.raises(OutOfStock):
            shop.buy(BUYER, product.id)

        assert db.query(Order).count() == 0
        assert gateway.created == []

    def test_disabled_product(self, shop, make_product):
        product = make_product(keys=["K-1"], enabled=False)
        with pytest.raises(NotFound):
            shop.buy(BUYER, product.id)

    def test_unknown_product(self, shop):
        with pytest.raises(NotFound):
            shop.buy(BUYER, 404)

    def test_gateway_failure_leaves_order_without_payment(self, db, shop, gateway, make_product):
        product = make_product(keys=["K-1"])
        gateway.fail_create = True

        with pytest.raises(GatewayError):
            shop.buy(BUYER, product.id)

        order = db.query(Order).one()
        assert order.status == ORDER_PENDING
        assert order.payment_id is None
        assert KeyStoreService(db).count_free(product.id) == 1


class TestCheckPayment:
    def test_happy_path(self, db, shop, gateway, make_product):
        product = make_product(keys=["DEMO-KEY-12345"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "succeeded")

        result = shop.check_payment(order.id, BUYER)

        assert result.outcome == SettlementOutcome.PAID
        assert result.key_value == "DEMO-KEY-12345"
        assert result.order.status == ORDER_PAID
        key = db.query(LicenseKey).one()
        assert key.used is True
        assert key.order_id == order.id

        again = shop.check_payment(order.id, BUYER)
        assert again.outcome == SettlementOutcome.ALREADY_PAID
        assert again.key_value == "DEMO-KEY-12345"

    def test_waiting_for_capture_counts_as_paid(self, shop, gateway, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "waiting_for_capture")
        assert shop.check_payment(order.id).outcome == SettlementOutcome.PAID

    def test_pending_payment(self, db, shop, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order

        result = shop.check_payment(order.id, BUYER)

        assert result.outcome == SettlementOutcome.NOT_SETTLED
        assert result.key_value is None
        assert KeyStoreService(db).count_free(product.id) == 1

    def test_canceled_payment(self, db, shop, gateway, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "canceled")

        assert shop.check_payment(order.id).outcome == SettlementOutcome.CANCELED
        assert shop.check_payment(order.id).outcome == SettlementOutcome.CANCELED
        db.refresh(order)
        assert order.status == ORDER_CANCELED
        assert KeyStoreService(db).count_free(product.id) == 1

    def test_foreign_order(self, shop, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        with pytest.raises(NotFound):
            shop.check_payment(order.id, 2002)

    def test_gateway_error_propagates(self, shop, gateway, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        gateway.fail_status = True
        with pytest.raises(GatewayError):
            shop.check_payment(order.id)

    def test_last_key_paid_twice(self, db, shop, gateway, notifier, sender, make_product):
        product = make_product(keys=["ONLY-KEY"])
        first = shop.buy(BUYER, product.id).order
        second = shop.buy(2002, product.id).order
        gateway.set_status(first.payment_id, "succeeded")
        gateway.set_status(second.payment_id, "succeeded")

        assert shop.check_payment(first.id).outcome == SettlementOutcome.PAID
        result = shop.check_payment(second.id)

        assert result.outcome == SettlementOutcome.KEY_UNAVAILABLE
        db.refresh(second)
        assert second.status == ORDER_PENDING
        assert second.key_value is None
        alerts = sender.to(ADMIN_ID)
        assert len(alerts) == 1
        assert f"#{second.id}" in alerts[0]

    def test_stuck_order_alerts_admin_once(self, db, shop, gateway, sender, make_product):
        product = make_product(keys=["ONLY"])
        first = shop.buy(BUYER, product.id).order
        stuck = shop.buy(2002, product.id).order
        gateway.set_status(first.payment_id, "succeeded")
        gateway.set_status(stuck.payment_id, "succeeded")
        shop.check_payment(first.id)

        for _ in range(5):
            assert shop.check_payment(stuck.id).outcome == SettlementOutcome.KEY_UNAVAILABLE
        assert shop.apply_gateway_event(stuck.payment_id) == SettlementOutcome.KEY_UNAVAILABLE

        assert len(sender.to(ADMIN_ID)) == 1
        db.refresh(stuck)
        assert stuck.key_unavailable_alerted_at is not None

    def test_stuck_order_settles_after_restock(self, db, shop, gateway, sender, make_product):
        product = make_product(keys=["ONLY"])
        first = shop.buy(BUYER, product.id).order
        stuck = shop.buy(2002, product.id).order
        gateway.set_status(first.payment_id, "succeeded")
        gateway.set_status(stuck.payment_id, "succeeded")
        shop.check_payment(first.id)
        assert shop.check_payment(stuck.id).outcome == SettlementOutcome.KEY_UNAVAILABLE

        KeyStoreService(db).add_key(product.id, "RESTOCK")
        db.commit()

        result = shop.check_payment(stuck.id)
        assert result.outcome == SettlementOutcome.PAID
        assert result.key_value == "RESTOCK"
        assert len(sender.to(ADMIN_ID)) == 1


class TestKeyRace:
    def test_lost_race_retries_with_next_attempt(self, db, shop, gateway, make_product):
        product = make_product(keys=["K-1", "K-2"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "succeeded")

        real_reserve = shop.keys.reserve
        attempts = []

        def flaky_reserve(key_id, order_id):
            attempts.append(key_id)
            if len(attempts) == 1:
                raise AlreadyUsed(key_id)
            return real_reserve(key_id, order_id)

        with patch.object(shop.keys, "reserve", side_effect=flaky_reserve):
            result = shop.check_payment(order.id)

        assert result.outcome == SettlementOutcome.PAID
        assert len(attempts) == 2
        assert db.query(LicenseKey).filter(LicenseKey.used.is_(True)).count() == 1

    def test_every_attempt_lost(self, db, shop, gateway, sender, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "succeeded")

        with patch.object(shop.keys, "reserve", side_effect=AlreadyUsed(1)):
            result = shop.check_payment(order.id)

        assert result.outcome == SettlementOutcome.KEY_UNAVAILABLE
        db.refresh(order)
        assert order.status == ORDER_PENDING
        assert KeyStoreService(db).count_free(product.id) == 1
        assert len(sender.to(ADMIN_ID)) == 1


class TestGatewayEvent:
    def test_webhook_delivers_key_once(self, shop, gateway, sender, make_product):
        product = make_product(keys=["DEMO-KEY-12345"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "succeeded")

        assert shop.apply_gateway_event(order.payment_id) == SettlementOutcome.PAID
        assert shop.apply_gateway_event(order.payment_id) == SettlementOutcome.ALREADY_PAID

        messages = sender.to(BUYER)
        assert len(messages) == 1
        assert "DEMO-KEY-12345" in messages[0]
        assert "Minecraft Java" in messages[0]

    def test_check_after_webhook_is_already_paid(self, shop, gateway, make_product):
        product = make_product(keys=["K-1"])
        order = shop.buy(BUYER, product.id).order
        gateway.set_status(order.payment_id, "succeeded")

        shop.apply_gateway_event(order.payment_id)
        result = shop.check_payment(order.id, BUYER)

        assert result.outcome == SettlementOutcome.ALREADY_PAID
        assert result.key_value == "K-1"

    def test_unknown_payment(self, shop):
        assert shop.apply_gateway_event("unknown") is None
