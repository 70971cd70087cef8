import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Enum, Integer, Numeric, String

from keyshop.db.base import Base


class ConversationState(str, enum.Enum):
    """What the bot expects as the next free-text message from this user."""

    IDLE = "idle"
    AWAITING_STEAM_AMOUNT = "awaiting_steam_amount"
    AWAITING_WALLET_AMOUNT = "awaiting_wallet_amount"
    AWAITING_WITHDRAW_AMOUNT = "awaiting_withdraw_amount"
    AWAITING_SUPPORT_MESSAGE = "awaiting_support_message"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String, nullable=True)   # @nickname
    display_name = Column(String, nullable=True)
    # NB: меняется только через WalletService (вместе со строкой wallet_transactions)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    conversation_state = Column(
        Enum(ConversationState, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ConversationState.IDLE,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
