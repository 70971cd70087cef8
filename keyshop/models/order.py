"""
Order: попытка покупки ключа.
status: pending -> paid | canceled, переход выполняется один раз (условным UPDATE).
support_status: независимый жизненный цикл чата поддержки по заказу.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String

from keyshop.db.base import Base

ORDER_PENDING = "pending"
ORDER_PAID = "paid"
ORDER_CANCELED = "canceled"

SUPPORT_NONE = "none"
SUPPORT_OPEN = "open"
SUPPORT_CLOSED = "closed"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # telegram id покупателя
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    status = Column(String, nullable=False, default=ORDER_PENDING)
    payment_id = Column(String, unique=True, nullable=True)  # id платежа ЮKassa
    key_value = Column(String, nullable=True)
    support_status = Column(String, nullable=False, default=SUPPORT_NONE)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
    # оплачен, но ключей не было: админа уже предупредили
    key_unavailable_alerted_at = Column(DateTime(timezone=True), nullable=True)
