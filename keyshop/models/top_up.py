"""
TopUp: пополнение кошелька или Steam через ЮKassa.
payment_id уникален: повторная сверка (webhook + кнопка «Проверить») не зачисляет дважды.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, Numeric, String

from keyshop.db.base import Base

TOPUP_WALLET = "wallet"
TOPUP_STEAM = "steam"

TOPUP_PENDING = "pending"
TOPUP_PAID = "paid"
TOPUP_CANCELED = "canceled"


class TopUp(Base):
    __tablename__ = "top_ups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # telegram id
    kind = Column(String, nullable=False)                     # wallet / steam
    amount = Column(Numeric(12, 2), nullable=False)           # сколько платит пользователь
    commission = Column(Numeric(12, 2), nullable=False, default=0)
    credited_amount = Column(Numeric(12, 2), nullable=False)  # сколько зачисляется
    payment_id = Column(String, unique=True, nullable=True)
    status = Column(String, nullable=False, default=TOPUP_PENDING)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
