import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from keyshop.core.errors import NotFound
from keyshop.models.order import (
    ORDER_CANCELED,
    ORDER_PAID,
    ORDER_PENDING,
    SUPPORT_CLOSED,
    SUPPORT_NONE,
    SUPPORT_OPEN,
    Order,
)

logger = logging.getLogger(__name__)

ORDER_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_CANCELED)
SUPPORT_STATUSES = (SUPPORT_NONE, SUPPORT_OPEN, SUPPORT_CLOSED)

# Поля, которые можно менять через update(); всё остальное фиксируется при создании.
_PATCHABLE_FIELDS = frozenset({"status", "payment_id", "key_value", "support_status"})


class OrderService:
    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: int, product_id: int) -> Order:
        order = Order(
            user_id=user_id,
            product_id=product_id,
            status=ORDER_PENDING,
            support_status=SUPPORT_NONE,
        )
        self.db.add(order)
        self.db.flush()
        logger.info("order_created", extra={"order_id": order.id, "telegram_id": user_id, "product_id": product_id})
        return order

    def update(self, order_id: int, **patch) -> Order:
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown order fields: {sorted(unknown)}")
        if "status" in patch and patch["status"] not in ORDER_STATUSES:
            raise ValueError(f"bad order status: {patch['status']}")
        if "support_status" in patch and patch["support_status"] not in SUPPORT_STATUSES:
            raise ValueError(f"bad support status: {patch['support_status']}")
        order = self.get_by_id(order_id)
        if order is None:
            raise NotFound("order", order_id)
        for field, value in patch.items():
            setattr(order, field, value)
        self.db.add(order)
        self.db.flush()
        return order

    def get_by_id(self, order_id: int) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id).one_or_none()

    def require(self, order_id: int) -> Order:
        order = self.get_by_id(order_id)
        if order is None:
            raise NotFound("order", order_id)
        return order

    def get_by_payment_id(self, payment_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.payment_id == payment_id).one_or_none()

    def find_open_support_order_for_user(self, user_id: int) -> Order | None:
        """Most recent order of the user with an open support thread."""
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id, Order.support_status == SUPPORT_OPEN)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .first()
        )

    def mark_paid(self, order_id: int, key_value: str) -> bool:
        """
        pending -> paid, один раз. False: заказ уже не pending
        (оплачен параллельной проверкой или отменён).
        """
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == ORDER_PENDING)
            .values(status=ORDER_PAID, key_value=key_value, paid_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        if result.rowcount == 0:
            return False
        logger.info("order_paid", extra={"order_id": order_id})
        return True

    def mark_canceled(self, order_id: int) -> bool:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == ORDER_PENDING)
            .values(status=ORDER_CANCELED)
        )
        self.db.flush()
        if result.rowcount == 0:
            return False
        logger.info("order_canceled", extra={"order_id": order_id})
        return True

    def mark_key_unavailable_alerted(self, order_id: int) -> bool:
        """First caller for a paid-but-keyless order wins; later checks must not alert again."""
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == ORDER_PENDING,
                Order.key_unavailable_alerted_at.is_(None),
            )
            .values(key_unavailable_alerted_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        return result.rowcount > 0

    def list_user_orders(self, user_id: int, limit: int = 20) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .all()
        )

    def list_open_support_threads(self) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(Order.support_status == SUPPORT_OPEN)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def list_pending_with_payment(self, since_hours: int) -> list[Order]:
        """Pending orders that already have a gateway payment, for background reconciliation."""
        since = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        return (
            self.db.query(Order)
            .filter(
                Order.status == ORDER_PENDING,
                Order.payment_id.isnot(None),
                Order.created_at >= since,
            )
            .order_by(Order.id)
            .all()
        )

    def count_by_status(self) -> dict[str, int]:
        return {status: self.db.query(Order).filter(Order.status == status).count() for status in ORDER_STATUSES}
