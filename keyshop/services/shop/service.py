"""
Purchase flow: reserve-on-payment.

buy() only checks that stock exists and opens a payment; the key is taken
when the payment is confirmed (check button, webhook or background
reconciliation, whichever comes first). Every path goes through
settle_order(), which is idempotent.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from keyshop.core.errors import AlreadyUsed, GatewayError, NotFound, OutOfStock
from keyshop.models.order import ORDER_CANCELED, ORDER_PAID, Order
from keyshop.models.product import Product
from keyshop.payments.gateway import YooKassaClient, get_gateway
from keyshop.services.keys.service import KeyStoreService
from keyshop.services.notifications.service import Notifier, key_unavailable_text
from keyshop.services.orders.service import OrderService
from keyshop.services.products.service import ProductService
from keyshop.services.shop.outcomes import SettlementOutcome
from keyshop.services.topups.service import TopUpService
from keyshop.utils.metrics import orders_created_total, orders_settled_total, out_of_stock_total

logger = logging.getLogger(__name__)

# Сколько раз пробуем следующий свободный ключ, если текущий увели параллельно
MAX_KEY_ATTEMPTS = 3


@dataclass
class BuyResult:
    order: Order
    product: Product
    confirmation_url: str | None


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    order: Order
    key_value: str | None = None


def key_delivery_text(product_name: str | None, key_value: str) -> str:
    title = f" «{product_name}»" if product_name else ""
    return f"✅ Оплата прошла! Ваш ключ{title}:\n\n{key_value}"


class ShopService:
    def __init__(
        self,
        db: Session,
        gateway: YooKassaClient | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.gateway = gateway or get_gateway()
        self.notifier = notifier or Notifier()
        self.products = ProductService(db)
        self.keys = KeyStoreService(db)
        self.orders = OrderService(db)

    def buy(self, telegram_id: int, product_id: int) -> BuyResult:
        product = self.products.get(product_id)
        if not product.enabled:
            raise NotFound("product", product_id)
        try:
            self.keys.find_free_key(product.id)
        except NotFound:
            out_of_stock_total.labels(product_id=str(product.id)).inc()
            logger.info("buy_out_of_stock", extra={"telegram_id": telegram_id, "product_id": product.id})
            raise OutOfStock(product.id)

        order = self.orders.create(telegram_id, product.id)
        self.db.commit()
        orders_created_total.labels(product_id=str(product.id)).inc()

        try:
            payment = self.gateway.create_payment(
                product.price,
                f"Покупка: {product.name}",
                {"kind": "order", "order_id": order.id},
            )
        except GatewayError:
            # order stays pending without payment_id; nothing to reconcile
            logger.warning("buy_payment_failed", extra={"order_id": order.id, "telegram_id": telegram_id})
            raise
        self.orders.update(order.id, payment_id=payment.id)
        self.db.commit()
        return BuyResult(order=order, product=product, confirmation_url=payment.confirmation_url)

    def check_payment(self, order_id: int, telegram_id: int | None = None) -> SettlementResult:
        order = self.orders.get_by_id(order_id)
        if order is None or (telegram_id is not None and order.user_id != telegram_id):
            raise NotFound("order", order_id)
        if order.status == ORDER_PAID:
            return self._done(SettlementOutcome.ALREADY_PAID, order)
        if order.status == ORDER_CANCELED:
            return self._done(SettlementOutcome.CANCELED, order)
        if not order.payment_id:
            return self._done(SettlementOutcome.NOT_SETTLED, order)

        status = self.gateway.get_payment_status(order.payment_id)
        if status.settled:
            return self.settle_order(order)
        if status.failed:
            if self.orders.mark_canceled(order.id):
                self.db.commit()
                self.db.refresh(order)
                return self._done(SettlementOutcome.CANCELED, order)
            self.db.rollback()
            return self._current_state(order)
        return self._done(SettlementOutcome.NOT_SETTLED, order)

    def settle_order(self, order: Order) -> SettlementResult:
        """
        pending -> paid with a key, exactly once.

        Both writes share one transaction: a lost key race rolls back the
        status change too, and a lost order race (already paid) never
        consumes a second key.
        """
        for _ in range(MAX_KEY_ATTEMPTS):
            try:
                key = self.keys.find_free_key(order.product_id)
            except NotFound:
                break
            if not self.orders.mark_paid(order.id, key.value):
                self.db.rollback()
                return self._current_state(order)
            try:
                self.keys.reserve(key.id, order.id)
            except AlreadyUsed:
                self.db.rollback()
                logger.info("settle_key_race_retry", extra={"order_id": order.id, "key_id": key.id})
                continue
            self.db.commit()
            self.db.refresh(order)
            logger.info("order_settled", extra={"order_id": order.id, "key_id": key.id, "telegram_id": order.user_id})
            return self._done(SettlementOutcome.PAID, order)

        self.db.rollback()
        if self.orders.mark_key_unavailable_alerted(order.id):
            self.db.commit()
            logger.error("order_paid_no_key", extra={"order_id": order.id, "payment_id": order.payment_id})
            self.notifier.alert_admin(key_unavailable_text(order.id, order.payment_id))
        else:
            self.db.rollback()
            logger.info("order_paid_no_key_already_alerted", extra={"order_id": order.id})
        return self._done(SettlementOutcome.KEY_UNAVAILABLE, order)

    def apply_gateway_event(self, payment_id: str) -> SettlementOutcome | None:
        """
        Webhook / reconciliation entry point. The notification body is not
        trusted: the payment is looked up locally and re-checked at the gateway.
        Returns None when the payment id is unknown.
        """
        order = self.orders.get_by_payment_id(payment_id)
        if order is not None:
            result = self.check_payment(order.id)
            if result.outcome == SettlementOutcome.PAID:
                product = self.db.get(Product, order.product_id)
                self.notifier.send_to_user(order.user_id, key_delivery_text(product.name if product else None, result.key_value))
            return result.outcome

        topups = TopUpService(self.db, gateway=self.gateway, notifier=self.notifier)
        top_up = topups.get_by_payment_id(payment_id)
        if top_up is not None:
            return topups.check_topup(top_up.id, notify_user=True).outcome

        logger.info("gateway_event_unknown_payment", extra={"payment_id": payment_id})
        return None

    def _current_state(self, order: Order) -> SettlementResult:
        self.db.refresh(order)
        if order.status == ORDER_PAID:
            return self._done(SettlementOutcome.ALREADY_PAID, order)
        if order.status == ORDER_CANCELED:
            return self._done(SettlementOutcome.CANCELED, order)
        return self._done(SettlementOutcome.NOT_SETTLED, order)

    def _done(self, outcome: SettlementOutcome, order: Order) -> SettlementResult:
        orders_settled_total.labels(outcome=outcome.value).inc()
        return SettlementResult(outcome=outcome, order=order, key_value=order.key_value)
