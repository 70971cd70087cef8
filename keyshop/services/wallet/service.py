"""
Wallet ledger: balance changes and their transaction rows are written together.

Invariant: users.balance == SUM(wallet_transactions.amount) for every user.
The balance column is never touched outside adjust_balance().
"""
import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import update
from sqlalchemy.orm import Session

from keyshop.core.errors import InsufficientFunds, InvalidAmount, NotFound
from keyshop.models.user import User
from keyshop.models.wallet_transaction import KIND_DEPOSIT, KIND_WITHDRAWAL, WalletTransaction
from keyshop.utils.metrics import wallet_operations_total

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(_CENT)
    except (InvalidOperation, ValueError):
        raise InvalidAmount(value)
    if not amount.is_finite():
        raise InvalidAmount(value)
    return amount


class WalletService:
    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, telegram_id: int) -> Decimal:
        user = self._get_user(telegram_id)
        return to_money(user.balance or 0)

    def adjust_balance(self, telegram_id: int, delta, description: str) -> Decimal:
        """
        Apply a signed delta and record it. Returns the new balance.

        The balance guard lives in the UPDATE itself, so two concurrent
        withdrawals cannot both pass a stale read.
        """
        amount = to_money(delta)
        if amount == 0:
            raise InvalidAmount(delta)
        user = self._get_user(telegram_id)
        result = self.db.execute(
            update(User)
            .where(User.id == user.id, (User.balance + amount) >= 0)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.refresh(user)
            wallet_operations_total.labels(kind="rejected").inc()
            logger.info(
                "wallet_insufficient_funds",
                extra={"telegram_id": telegram_id, "amount": str(amount)},
            )
            raise InsufficientFunds(to_money(user.balance), -amount)
        kind = KIND_DEPOSIT if amount > 0 else KIND_WITHDRAWAL
        self.db.add(
            WalletTransaction(
                user_id=user.id,
                amount=amount,
                kind=kind,
                description=description,
            )
        )
        self.db.flush()
        self.db.refresh(user)
        wallet_operations_total.labels(kind=kind).inc()
        logger.info("wallet_adjusted", extra={"telegram_id": telegram_id, "amount": str(amount), "kind": kind})
        return to_money(user.balance)

    def deposit(self, telegram_id: int, amount, description: str) -> Decimal:
        value = to_money(amount)
        if value <= 0:
            raise InvalidAmount(amount)
        return self.adjust_balance(telegram_id, value, description)

    def withdraw(self, telegram_id: int, amount, description: str) -> Decimal:
        value = to_money(amount)
        if value <= 0:
            raise InvalidAmount(amount)
        return self.adjust_balance(telegram_id, -value, description)

    def list_transactions(self, telegram_id: int, limit: int = 20) -> list[WalletTransaction]:
        user = self._get_user(telegram_id)
        return (
            self.db.query(WalletTransaction)
            .filter(WalletTransaction.user_id == user.id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def _get_user(self, telegram_id: int) -> User:
        user = self.db.query(User).filter(User.telegram_id == telegram_id).one_or_none()
        if not user:
            raise NotFound("user", telegram_id)
        return user
