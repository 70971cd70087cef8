"""
Bot intents (menu buttons and inline callbacks) on top of the services.

Everything here is synchronous and talks to the database; keyshop.bot.main
runs it in a worker thread and renders the returned Reply.
"""
import logging

from sqlalchemy.orm import Session

from keyshop.core.config import settings
from keyshop.core.errors import GatewayError, InsufficientFunds, InvalidAmount, NotFound, OutOfStock
from keyshop.models.order import ORDER_PAID
from keyshop.models.user import ConversationState
from keyshop.payments.gateway import YooKassaClient
from keyshop.services.notifications.service import Notifier
from keyshop.services.orders.service import OrderService
from keyshop.services.products.service import ProductService
from keyshop.services.shop.outcomes import SettlementOutcome
from keyshop.services.shop.service import ShopService, key_delivery_text
from keyshop.services.support.service import SupportService
from keyshop.services.topups.service import TopUpService, parse_amount, steam_commission, topup_paid_text
from keyshop.services.users.service import UserService
from keyshop.services.wallet.service import WalletService
from keyshop.bot.replies import (
    ALREADY_PAID_TEXT,
    CANCELED_TEXT,
    CB_BUY,
    CB_CHECK,
    CB_CHECK_TOPUP,
    CB_CLOSE,
    CB_CREATE_TICKET,
    CB_HELP,
    CB_WALLET_RECHARGE,
    CB_WALLET_WITHDRAW,
    GATEWAY_ERROR_TEXT,
    KEY_UNAVAILABLE_TEXT,
    MENU_TEXT,
    NOT_SETTLED_TEXT,
    WELCOME_TEXT,
    Button,
    Reply,
    back_to_menu_row,
)

logger = logging.getLogger("bot")


class BotFlows:
    def __init__(
        self,
        db: Session,
        gateway: YooKassaClient | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.notifier = notifier or Notifier()
        self.shop = ShopService(db, gateway=gateway, notifier=self.notifier)
        self.gateway = self.shop.gateway
        self.topups = TopUpService(db, gateway=self.gateway, notifier=self.notifier)
        self.support = SupportService(db, notifier=self.notifier)
        self.users = UserService(db)
        self.wallet = WalletService(db)

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    def start(self, telegram_id: int, username: str | None, display_name: str | None) -> Reply:
        self.users.get_or_create_user(telegram_id, username, display_name)
        self.users.reset_state(telegram_id)
        return Reply(WELCOME_TEXT)

    def menu(self, telegram_id: int) -> Reply:
        self.users.reset_state(telegram_id)
        return Reply(MENU_TEXT)

    def list_products(self, telegram_id: int, title: str = "🔑 Выберите лицензию:") -> Reply:
        self.users.reset_state(telegram_id)
        products = ProductService(self.db).list_active()
        if not products:
            return Reply("🛒 Товары скоро появятся!")
        rows = [[Button(f"{p.name} — {p.price} ₽", callback_data=f"{CB_BUY}{p.id}")] for p in products]
        rows.append(back_to_menu_row())
        return Reply(title, rows)

    def profile(self, telegram_id: int, username: str | None, display_name: str | None) -> Reply:
        self.users.reset_state(telegram_id)
        user = self.users.get_or_create_user(telegram_id, username, display_name)
        orders = OrderService(self.db).list_user_orders(telegram_id)
        paid = sum(1 for o in orders if o.status == ORDER_PAID)
        registered = user.created_at.strftime("%d.%m.%Y") if user.created_at else "—"
        text = (
            "👤 Ваш профиль:\n"
            f"ID: {telegram_id}\n"
            f"Имя: {user.display_name or '—'}\n"
            f"Username: @{user.username or 'не указан'}\n"
            f"Дата регистрации: {registered}\n"
            f"Баланс: {self.wallet.get_balance(telegram_id)} ₽\n"
            f"Покупок: {paid}\n\n"
            "Для возврата в главное меню нажмите /menu"
        )
        return Reply(text, [back_to_menu_row()])

    def help(self, telegram_id: int) -> Reply:
        self.users.reset_state(telegram_id)
        text = (
            "🆘 Служба поддержки\n\n"
            "Если у вас возникли проблемы, нажмите кнопку ниже для связи с поддержкой.\n\n"
            "Администраторы получат ваш запрос и свяжутся с вами в ближайшее время."
        )
        return Reply(text, [[Button("💬 Создать тикет", callback_data=CB_CREATE_TICKET)], back_to_menu_row()])

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def buy(self, telegram_id: int, product_id: int) -> Reply:
        try:
            result = self.shop.buy(telegram_id, product_id)
        except OutOfStock as e:
            return Reply(e.user_message, alert=True)
        except NotFound:
            return Reply("❌ Товар не найден", alert=True)
        except GatewayError:
            return Reply(GATEWAY_ERROR_TEXT)
        order = result.order
        text = (
            f"🧾 Заказ #{order.id}\n"
            f"Товар: {result.product.name}\n"
            f"Сумма: {result.product.price} ₽\n\n"
            "После оплаты нажмите «Проверить оплату»."
        )
        rows = []
        if result.confirmation_url:
            rows.append([Button("💳 Оплатить", url=result.confirmation_url)])
        rows.append([Button("🔄 Проверить оплату", callback_data=f"{CB_CHECK}{order.id}")])
        return Reply(text, rows)

    def check_order(self, telegram_id: int, order_id: int) -> Reply:
        try:
            result = self.shop.check_payment(order_id, telegram_id)
        except NotFound:
            return Reply("❌", alert=True)
        except GatewayError:
            return Reply(GATEWAY_ERROR_TEXT, alert=True)

        if result.outcome == SettlementOutcome.PAID:
            product = ProductService(self.db).get(result.order.product_id)
            return Reply(
                key_delivery_text(product.name, result.key_value) + "\n\nСпасибо за покупку!",
                [
                    [Button("✅ Всё работает", callback_data=f"{CB_CLOSE}{order_id}")],
                    [Button("🆘 Нужна помощь", callback_data=f"{CB_HELP}{order_id}")],
                ],
            )
        if result.outcome == SettlementOutcome.ALREADY_PAID:
            return Reply(ALREADY_PAID_TEXT, alert=True)
        if result.outcome == SettlementOutcome.CANCELED:
            return Reply(CANCELED_TEXT, alert=True)
        if result.outcome == SettlementOutcome.KEY_UNAVAILABLE:
            return Reply(KEY_UNAVAILABLE_TEXT)
        return Reply(NOT_SETTLED_TEXT, alert=True)

    # ------------------------------------------------------------------
    # Support
    # ------------------------------------------------------------------

    def close_order(self, telegram_id: int, order_id: int) -> Reply:
        try:
            self.support.close_thread(order_id, telegram_id)
        except NotFound:
            return Reply("❌", alert=True)
        self.users.reset_state(telegram_id)
        return Reply("🔒 Заказ закрыт. Спасибо!")

    def open_support(self, telegram_id: int, order_id: int) -> Reply:
        try:
            self.support.open_thread(order_id, telegram_id)
        except NotFound:
            return Reply("❌", alert=True)
        self.users.set_state(telegram_id, ConversationState.AWAITING_SUPPORT_MESSAGE)
        return Reply("👨‍🔧 Поддержка подключена!\nНапишите ваш вопрос:")

    def ticket_prompt(self, telegram_id: int) -> Reply:
        self.users.set_state(telegram_id, ConversationState.AWAITING_SUPPORT_MESSAGE)
        return Reply("✍️ Опишите проблему одним сообщением:", [back_to_menu_row()])

    def support_text(self, telegram_id: int, text: str, username: str | None, display_name: str | None) -> Reply:
        """Text while awaiting a support message: goes to the open thread, otherwise becomes a ticket."""
        if self.support.orders.find_open_support_order_for_user(telegram_id) is not None:
            return self.thread_text(telegram_id, text)
        self.support.create_ticket(telegram_id, username, display_name, text)
        self.users.reset_state(telegram_id)
        return Reply("✅ Ваш тикет отправлен в поддержку. Администратор свяжется с вами в ближайшее время.")

    def thread_text(self, telegram_id: int, text: str) -> Reply | None:
        """None when the user has no open thread."""
        try:
            self.support.post_user_message(telegram_id, text)
        except NotFound:
            return None
        except ValueError:
            return Reply("❌ Пустое сообщение")
        return Reply("✅ Сообщение отправлено админу!")

    # ------------------------------------------------------------------
    # Wallet and top-ups
    # ------------------------------------------------------------------

    def wallet_menu(self, telegram_id: int, username: str | None, display_name: str | None) -> Reply:
        self.users.get_or_create_user(telegram_id, username, display_name)
        self.users.reset_state(telegram_id)
        text = f"💼 Ваш кошелек:\nБаланс: {self.wallet.get_balance(telegram_id)} ₽"
        return Reply(
            text,
            [
                [Button("💳 Пополнить", callback_data=CB_WALLET_RECHARGE)],
                [Button("💸 Вывести", callback_data=CB_WALLET_WITHDRAW)],
                back_to_menu_row(),
            ],
        )

    def steam_prompt(self, telegram_id: int) -> Reply:
        self.users.set_state(telegram_id, ConversationState.AWAITING_STEAM_AMOUNT)
        commission, credited = steam_commission(1000)
        text = (
            "💰 Пополнение Steam Wallet\n\n"
            "Введите сумму для пополнения (в рублях):\n"
            f"Комиссия: {settings.steam_fee_percent}%\n\n"
            f"Пример: 1000 -> Вы получите {credited:.0f} ₽ на Steam Wallet"
        )
        return Reply(text, [back_to_menu_row()])

    def wallet_recharge_prompt(self, telegram_id: int) -> Reply:
        self.users.set_state(telegram_id, ConversationState.AWAITING_WALLET_AMOUNT)
        return Reply("💳 Введите сумму пополнения кошелька (в рублях):", [back_to_menu_row()])

    def withdraw_prompt(self, telegram_id: int) -> Reply:
        self.users.set_state(telegram_id, ConversationState.AWAITING_WITHDRAW_AMOUNT)
        balance = self.wallet.get_balance(telegram_id)
        return Reply(f"💸 Доступно к выводу: {balance} ₽\nВведите сумму:", [back_to_menu_row()])

    def steam_amount(self, telegram_id: int, raw: str) -> Reply:
        try:
            amount = parse_amount(raw)
        except InvalidAmount as e:
            return Reply(e.user_message)
        self.users.reset_state(telegram_id)
        try:
            started = self.topups.start_steam_topup(telegram_id, amount)
        except GatewayError:
            return Reply(GATEWAY_ERROR_TEXT)
        top_up = started.top_up
        text = (
            "💰 Пополнение Steam Wallet\n\n"
            f"Сумма: {top_up.amount} ₽\n"
            f"Комиссия ({settings.steam_fee_percent}%): {top_up.commission} ₽\n"
            f"Итого: {top_up.credited_amount} ₽"
        )
        return Reply(text, self._topup_buttons(top_up.id, started.confirmation_url))

    def wallet_amount(self, telegram_id: int, raw: str) -> Reply:
        try:
            amount = parse_amount(raw)
        except InvalidAmount as e:
            return Reply(e.user_message)
        self.users.reset_state(telegram_id)
        try:
            started = self.topups.start_wallet_topup(telegram_id, amount)
        except GatewayError:
            return Reply(GATEWAY_ERROR_TEXT)
        text = f"💼 Пополнение кошелька\n\nСумма: {started.top_up.amount} ₽"
        return Reply(text, self._topup_buttons(started.top_up.id, started.confirmation_url))

    def withdraw_amount(self, telegram_id: int, raw: str) -> Reply:
        try:
            amount = parse_amount(raw)
        except InvalidAmount as e:
            return Reply(e.user_message)
        self.users.reset_state(telegram_id)
        try:
            balance = self.topups.request_withdrawal(telegram_id, amount)
        except InsufficientFunds as e:
            return Reply(e.user_message)
        return Reply(f"✅ Заявка на вывод {amount} ₽ принята.\nБаланс: {balance} ₽")

    def check_topup(self, telegram_id: int, top_up_id: int) -> Reply:
        try:
            result = self.topups.check_topup(top_up_id, telegram_id)
        except NotFound:
            return Reply("❌", alert=True)
        except GatewayError:
            return Reply(GATEWAY_ERROR_TEXT, alert=True)
        if result.outcome == SettlementOutcome.PAID:
            return Reply(topup_paid_text(result.top_up, result.balance))
        if result.outcome == SettlementOutcome.ALREADY_PAID:
            return Reply(ALREADY_PAID_TEXT, alert=True)
        if result.outcome == SettlementOutcome.CANCELED:
            return Reply(CANCELED_TEXT, alert=True)
        return Reply(NOT_SETTLED_TEXT, alert=True)

    def _topup_buttons(self, top_up_id: int, confirmation_url: str | None) -> list[list[Button]]:
        rows = []
        if confirmation_url:
            rows.append([Button("💳 Оплатить", url=confirmation_url)])
        rows.append([Button("🔄 Проверить оплату", callback_data=f"{CB_CHECK_TOPUP}{top_up_id}")])
        return rows
