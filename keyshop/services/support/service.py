import logging

from sqlalchemy.orm import Session

from keyshop.core.errors import NotFound
from keyshop.models.order import SUPPORT_CLOSED, SUPPORT_OPEN, Order
from keyshop.models.support_message import SENDER_ADMIN, SENDER_USER, SupportMessage
from keyshop.services.notifications.service import (
    Notifier,
    support_message_text,
    support_request_text,
    ticket_text,
)
from keyshop.services.orders.service import OrderService
from keyshop.services.support.chat_bus import ChatBus

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


class SupportService:
    """
    Per-order support threads.
    Order.support_status: none -> open -> closed (can be reopened by the buyer).
    """

    def __init__(self, db: Session, notifier: Notifier | None = None, bus: ChatBus | None = None):
        self.db = db
        self.notifier = notifier or Notifier()
        self.bus = bus or ChatBus()
        self.orders = OrderService(db)

    def open_thread(self, order_id: int, telegram_id: int) -> Order:
        order = self._own_order(order_id, telegram_id)
        if order.support_status != SUPPORT_OPEN:
            self.orders.update(order.id, support_status=SUPPORT_OPEN)
            self.db.commit()
            logger.info("support_opened", extra={"order_id": order.id, "telegram_id": telegram_id})
            self.notifier.alert_admin(support_request_text(order.id))
        return order

    def close_thread(self, order_id: int, telegram_id: int | None = None) -> Order:
        order = self._own_order(order_id, telegram_id)
        if order.support_status == SUPPORT_OPEN:
            self.orders.update(order.id, support_status=SUPPORT_CLOSED)
            self.db.commit()
            logger.info("support_closed", extra={"order_id": order.id, "telegram_id": telegram_id})
            self.bus.publish(order.id, SENDER_ADMIN, "Чат закрыт")
            if telegram_id is None:
                self.notifier.send_to_user(order.user_id, f"Чат поддержки по заказу #{order.id} закрыт.")
        return order

    def post_user_message(self, telegram_id: int, text: str) -> SupportMessage:
        """Route free text of a buyer to the most recent open thread."""
        order = self.orders.find_open_support_order_for_user(telegram_id)
        if order is None:
            raise NotFound("support_thread", telegram_id)
        message = self._save(order, SENDER_USER, text)
        self.bus.publish(order.id, SENDER_USER, message.text, message.created_at)
        self.notifier.alert_admin(support_message_text(order.id, telegram_id, message.text))
        return message

    def post_admin_message(self, order_id: int, text: str) -> SupportMessage:
        order = self.orders.require(order_id)
        message = self._save(order, SENDER_ADMIN, text)
        self.bus.publish(order.id, SENDER_ADMIN, message.text, message.created_at)
        self.notifier.send_to_user(order.user_id, f"👨‍💻 Поддержка (заказ #{order.id}):\n{message.text}")
        return message

    def get_chat_history(self, order_id: int) -> list[SupportMessage]:
        return (
            self.db.query(SupportMessage)
            .filter(SupportMessage.order_id == order_id)
            .order_by(SupportMessage.created_at, SupportMessage.id)
            .all()
        )

    def list_open_threads(self) -> list[Order]:
        return self.orders.list_open_support_threads()

    def create_ticket(
        self,
        telegram_id: int,
        username: str | None,
        display_name: str | None,
        text: str | None = None,
    ) -> None:
        who = f"{display_name or ''} (@{username})" if username else (display_name or str(telegram_id))
        self.notifier.alert_admin(ticket_text("бот", f"{who}, id {telegram_id}", None, text))
        logger.info("ticket_created", extra={"telegram_id": telegram_id})

    def submit_ticket(self, name: str, email: str, message: str) -> None:
        name, email, message = (name or "").strip(), (email or "").strip(), (message or "").strip()
        if not name or not email or not message:
            raise ValueError("name, email and message are required")
        self.notifier.alert_admin(ticket_text("сайт", name, email, message[:MAX_MESSAGE_LENGTH]))
        logger.info("web_ticket_created")

    def _own_order(self, order_id: int, telegram_id: int | None) -> Order:
        order = self.orders.get_by_id(order_id)
        if order is None or (telegram_id is not None and order.user_id != telegram_id):
            raise NotFound("order", order_id)
        return order

    def _save(self, order: Order, sender: str, text: str) -> SupportMessage:
        text = (text or "").strip()
        if not text:
            raise ValueError("empty support message")
        message = SupportMessage(order_id=order.id, sender=sender, text=text[:MAX_MESSAGE_LENGTH])
        self.db.add(message)
        self.db.commit()
        return message
