"""
Notifications to the administrator and to buyers.

Messages are queued to the send_telegram_message Celery task. Notification is
best-effort: a broker outage is logged and swallowed, business state is already
committed by the time anything is sent.
"""
import logging
from decimal import Decimal
from typing import Callable

from keyshop.core.config import settings

logger = logging.getLogger(__name__)

Sender = Callable[[int, str], None]


def _enqueue(chat_id: int, text: str) -> None:
    from keyshop.workers.tasks.notify import send_telegram_message

    send_telegram_message.delay(chat_id, text)


# Тексты уведомлений администратору
def support_request_text(order_id: int) -> str:
    return f"🆘 Новый запрос поддержки!\nЗаказ #{order_id}"


def support_message_text(order_id: int, telegram_id: int, text: str) -> str:
    return f"💬 Сообщение по заказу #{order_id} от {telegram_id}:\n{text}"


def steam_topup_text(telegram_id: int, amount: Decimal, commission: Decimal, credited: Decimal) -> str:
    return (
        f"💰 Новое пополнение Steam от {telegram_id}\n"
        f"Сумма: {amount} ₽\n"
        f"Комиссия: {commission} ₽\n"
        f"К зачислению: {credited} ₽"
    )


def key_unavailable_text(order_id: int, payment_id: str | None) -> str:
    return (
        f"⚠️ Заказ #{order_id} оплачен, но свободных ключей нет.\n"
        f"Платёж: {payment_id}\nНужна ручная выдача или возврат."
    )


def ticket_text(source: str, who: str, contact: str | None, message: str | None) -> str:
    lines = [f"📩 Новый тикет ({source})", f"От: {who}"]
    if contact:
        lines.append(f"Контакт: {contact}")
    if message:
        lines.append(f"Сообщение: {message}")
    return "\n".join(lines)


class Notifier:
    def __init__(self, sender: Sender | None = None, admin_chat_id: int | None = None):
        self._send = sender or _enqueue
        self.admin_chat_id = admin_chat_id if admin_chat_id is not None else settings.admin_telegram_id

    def alert_admin(self, text: str) -> None:
        self._deliver(self.admin_chat_id, text)

    def send_to_user(self, telegram_id: int, text: str) -> None:
        self._deliver(telegram_id, text)

    def _deliver(self, chat_id: int, text: str) -> None:
        try:
            self._send(chat_id, text)
        except Exception as e:
            logger.warning("notification_enqueue_failed", extra={"chat_id": chat_id, "error": str(e)})
