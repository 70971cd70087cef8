"""
Wallet and Steam top-ups paid through YooKassa.

Fee policy:
- wallet: the whole paid amount is credited to the in-shop wallet;
- steam: the user pays the entered amount, steam_fee_percent is kept as
  commission and the rest is delivered to Steam by the administrator
  (the shop wallet is not touched).

A top-up is settled by a conditional pending -> paid update, so the wallet is
credited at most once however many times the payment is checked.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from keyshop.core.config import settings
from keyshop.core.errors import InvalidAmount, NotFound
from keyshop.models.top_up import (
    TOPUP_CANCELED,
    TOPUP_PAID,
    TOPUP_PENDING,
    TOPUP_STEAM,
    TOPUP_WALLET,
    TopUp,
)
from keyshop.payments.gateway import YooKassaClient, get_gateway
from keyshop.services.notifications.service import Notifier, steam_topup_text
from keyshop.services.shop.outcomes import SettlementOutcome
from keyshop.services.wallet.service import WalletService, to_money
from keyshop.utils.metrics import topups_total

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

METADATA_KIND = {
    TOPUP_WALLET: "wallet_replenishment",
    TOPUP_STEAM: "steam_replenishment",
}


def parse_amount(raw) -> int:
    """User input -> whole rubles within configured limits."""
    text = str(raw if raw is not None else "").strip().replace(" ", "")
    if not text or not text.isdigit():
        raise InvalidAmount(raw)
    amount = int(text)
    if amount <= 0 or amount < settings.topup_min_amount or amount > settings.topup_max_amount:
        raise InvalidAmount(raw)
    return amount


def steam_commission(amount, fee_percent: int | None = None) -> tuple[Decimal, Decimal]:
    """(commission, credited) for a Steam top-up: 1000 at 7% -> (70.00, 930.00)."""
    percent = settings.steam_fee_percent if fee_percent is None else fee_percent
    value = to_money(amount)
    commission = (value * Decimal(percent) / Decimal(100)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return commission, value - commission


@dataclass
class TopUpStarted:
    top_up: TopUp
    confirmation_url: str | None


@dataclass
class TopUpResult:
    outcome: SettlementOutcome
    top_up: TopUp
    balance: Decimal | None = None


def topup_paid_text(top_up: TopUp, balance: Decimal | None) -> str:
    if top_up.kind == TOPUP_WALLET:
        return f"✅ Кошелёк пополнен на {top_up.credited_amount} ₽\nБаланс: {balance} ₽"
    return (
        f"✅ Оплата получена! Пополнение Steam на {top_up.credited_amount} ₽ "
        f"(комиссия {top_up.commission} ₽) будет выполнено администратором."
    )


class TopUpService:
    def __init__(
        self,
        db: Session,
        gateway: YooKassaClient | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.gateway = gateway or get_gateway()
        self.notifier = notifier or Notifier()
        self.wallet = WalletService(db)

    def start_wallet_topup(self, telegram_id: int, amount: int) -> TopUpStarted:
        value = to_money(amount)
        return self._start(telegram_id, TOPUP_WALLET, value, Decimal("0.00"), value, "Пополнение кошелька")

    def start_steam_topup(self, telegram_id: int, amount: int) -> TopUpStarted:
        commission, credited = steam_commission(amount)
        return self._start(telegram_id, TOPUP_STEAM, to_money(amount), commission, credited, "Пополнение Steam")

    def get(self, top_up_id: int) -> TopUp | None:
        return self.db.query(TopUp).filter(TopUp.id == top_up_id).one_or_none()

    def get_by_payment_id(self, payment_id: str) -> TopUp | None:
        return self.db.query(TopUp).filter(TopUp.payment_id == payment_id).one_or_none()

    def list_pending_with_payment(self, since_hours: int) -> list[TopUp]:
        since = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        return (
            self.db.query(TopUp)
            .filter(TopUp.status == TOPUP_PENDING, TopUp.payment_id.isnot(None), TopUp.created_at >= since)
            .order_by(TopUp.id)
            .all()
        )

    def check_topup(self, top_up_id: int, telegram_id: int | None = None, notify_user: bool = False) -> TopUpResult:
        top_up = self.get(top_up_id)
        if top_up is None or (telegram_id is not None and top_up.user_id != telegram_id):
            raise NotFound("top_up", top_up_id)
        if top_up.status == TOPUP_PAID:
            return TopUpResult(SettlementOutcome.ALREADY_PAID, top_up)
        if top_up.status == TOPUP_CANCELED:
            return TopUpResult(SettlementOutcome.CANCELED, top_up)
        if not top_up.payment_id:
            return TopUpResult(SettlementOutcome.NOT_SETTLED, top_up)

        status = self.gateway.get_payment_status(top_up.payment_id)
        if status.settled:
            result = self.settle_topup(top_up)
            if notify_user and result.outcome == SettlementOutcome.PAID:
                self.notifier.send_to_user(top_up.user_id, topup_paid_text(top_up, result.balance))
            return result
        if status.failed:
            changed = self._transition(top_up.id, TOPUP_CANCELED)
            self.db.commit()
            self.db.refresh(top_up)
            if changed:
                topups_total.labels(kind=top_up.kind, event="canceled").inc()
            return TopUpResult(SettlementOutcome.CANCELED if top_up.status == TOPUP_CANCELED else SettlementOutcome.ALREADY_PAID, top_up)
        return TopUpResult(SettlementOutcome.NOT_SETTLED, top_up)

    def settle_topup(self, top_up: TopUp) -> TopUpResult:
        """pending -> paid once; the wallet credit rides in the same transaction."""
        if not self._transition(top_up.id, TOPUP_PAID):
            self.db.rollback()
            self.db.refresh(top_up)
            outcome = SettlementOutcome.CANCELED if top_up.status == TOPUP_CANCELED else SettlementOutcome.ALREADY_PAID
            return TopUpResult(outcome, top_up)

        balance = None
        if top_up.kind == TOPUP_WALLET:
            balance = self.wallet.deposit(top_up.user_id, top_up.credited_amount, f"Пополнение кошелька #{top_up.id}")
        self.db.commit()
        self.db.refresh(top_up)
        topups_total.labels(kind=top_up.kind, event="paid").inc()
        logger.info(
            "topup_paid",
            extra={"top_up_id": top_up.id, "telegram_id": top_up.user_id, "kind": top_up.kind, "amount": str(top_up.credited_amount)},
        )
        if top_up.kind == TOPUP_STEAM:
            self.notifier.alert_admin(
                steam_topup_text(top_up.user_id, top_up.amount, top_up.commission, top_up.credited_amount)
            )
        return TopUpResult(SettlementOutcome.PAID, top_up, balance)

    def request_withdrawal(self, telegram_id: int, amount: int) -> Decimal:
        """Debit the wallet and hand the payout over to the administrator."""
        balance = self.wallet.withdraw(telegram_id, amount, "Вывод средств")
        self.db.commit()
        self.notifier.alert_admin(f"💸 Запрос на вывод от {telegram_id}\nСумма: {to_money(amount)} ₽")
        return balance

    def _start(
        self,
        telegram_id: int,
        kind: str,
        amount: Decimal,
        commission: Decimal,
        credited: Decimal,
        description: str,
    ) -> TopUpStarted:
        top_up = TopUp(
            user_id=telegram_id,
            kind=kind,
            amount=amount,
            commission=commission,
            credited_amount=credited,
            status=TOPUP_PENDING,
        )
        self.db.add(top_up)
        self.db.flush()
        self.db.commit()
        topups_total.labels(kind=kind, event="created").inc()

        payment = self.gateway.create_payment(
            amount,
            description,
            {"kind": METADATA_KIND[kind], "top_up_id": top_up.id, "user_id": telegram_id},
        )
        top_up.payment_id = payment.id
        self.db.add(top_up)
        self.db.commit()
        logger.info(
            "topup_started",
            extra={"top_up_id": top_up.id, "telegram_id": telegram_id, "kind": kind, "payment_id": payment.id},
        )
        return TopUpStarted(top_up=top_up, confirmation_url=payment.confirmation_url)

    def _transition(self, top_up_id: int, new_status: str) -> bool:
        values = {"status": new_status}
        if new_status == TOPUP_PAID:
            values["paid_at"] = datetime.now(timezone.utc)
        result = self.db.execute(
            update(TopUp)
            .where(TopUp.id == top_up_id, TopUp.status == TOPUP_PENDING)
            .values(**values)
        )
        self.db.flush()
        return result.rowcount > 0
