from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from keyshop.models.license_key import LicenseKey
from keyshop.models.order import ORDER_PAID, SUPPORT_OPEN, Order
from keyshop.models.product import Product
from keyshop.models.user import User


class StatsService:
    """Aggregates for the admin dashboard and /api/stats."""

    def __init__(self, db: Session):
        self.db = db

    def overview(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_ago = now - timedelta(days=30)

        total_orders = self.db.query(func.count(Order.id)).scalar() or 0
        paid_orders = self.db.query(func.count(Order.id)).filter(Order.status == ORDER_PAID).scalar() or 0
        return {
            "total": {
                "orders": total_orders,
                "paid_orders": paid_orders,
                "open_chats": self.db.query(func.count(Order.id)).filter(Order.support_status == SUPPORT_OPEN).scalar() or 0,
                "free_keys": self.db.query(func.count(LicenseKey.id)).filter(LicenseKey.used == False).scalar() or 0,  # noqa: E712
                "revenue": self._revenue(),
                "users": self.db.query(func.count(User.id)).scalar() or 0,
            },
            "today": {
                "orders": self._orders_since(day_start),
                "revenue": self._revenue(day_start),
            },
            "month": {
                "orders": self._orders_since(month_ago),
                "revenue": self._revenue(month_ago),
            },
            "success_rate": round(paid_orders * 100 / total_orders, 1) if total_orders else 0.0,
        }

    def products_with_stock(self, only_enabled: bool = True) -> list[dict]:
        q = (
            self.db.query(Product, func.count(LicenseKey.id))
            .outerjoin(LicenseKey, (LicenseKey.product_id == Product.id) & (LicenseKey.used == False))  # noqa: E712
            .group_by(Product.id)
            .order_by(Product.id)
        )
        if only_enabled:
            q = q.filter(Product.enabled.is_(True))
        return [
            {
                "id": product.id,
                "name": product.name,
                "price": product.price,
                "description": product.description,
                "enabled": product.enabled,
                "available_keys": free,
            }
            for product, free in q.all()
        ]

    def _orders_since(self, since: datetime) -> int:
        return self.db.query(func.count(Order.id)).filter(Order.created_at >= since).scalar() or 0

    def _revenue(self, since: datetime | None = None) -> int:
        q = (
            self.db.query(func.coalesce(func.sum(Product.price), 0))
            .select_from(Order)
            .join(Product, Product.id == Order.product_id)
            .filter(Order.status == ORDER_PAID)
        )
        if since is not None:
            q = q.filter(Order.created_at >= since)
        return int(q.scalar() or 0)
