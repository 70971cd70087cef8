from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from keyshop.db.base import Base

KIND_DEPOSIT = "deposit"
KIND_WITHDRAWAL = "withdrawal"


class WalletTransaction(Base):
    """Append-only: users.balance == SUM(amount) по пользователю."""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # со знаком
    kind = Column(String, nullable=False)  # deposit / withdrawal
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
