"""
Framework-free bot replies: flows return Reply objects, keyshop.bot.main turns
them into aiogram messages and keyboards.
"""
from dataclasses import dataclass, field

# Главное меню (reply-клавиатура)
BTN_KEYS = "🔑 Ключи"
BTN_SUBSCRIPTIONS = "💳 Подписки"
BTN_STEAM = "💰 Пополнение Steam"
BTN_PROFILE = "👤 Профиль"
BTN_WALLET = "💼 Кошелек"
BTN_HELP = "🆘 Помощь"

MAIN_MENU_ROWS = [
    [BTN_KEYS, BTN_SUBSCRIPTIONS],
    [BTN_STEAM, BTN_PROFILE],
    [BTN_WALLET, BTN_HELP],
]

# callback_data
CB_MAIN_MENU = "main_menu"
CB_BUY = "buy_"
CB_CHECK = "check_"
CB_CLOSE = "close_"
CB_HELP = "help_"
CB_CHECK_TOPUP = "check_topup_"
CB_CREATE_TICKET = "create_ticket"
CB_WALLET_RECHARGE = "wallet_recharge"
CB_WALLET_WITHDRAW = "wallet_withdraw"

WELCOME_TEXT = "👋 Добро пожаловать в наш магазин!\n\nВыберите действие:"
MENU_TEXT = "📋 Главное меню:\n\nВыберите действие:"
GATEWAY_ERROR_TEXT = "Ошибка платежа. Попробуйте позже."
NOT_SETTLED_TEXT = "Платёж не завершён. Попробуйте позже."
ALREADY_PAID_TEXT = "✅ Уже оплачено!"
CANCELED_TEXT = "❌ Платёж отменён."
KEY_UNAVAILABLE_TEXT = "Ключ больше не доступен. Мы уже разбираемся, администратор свяжется с вами."
UNKNOWN_TEXT = "Не понял 🤔 Воспользуйтесь меню или нажмите /menu"


@dataclass
class Button:
    text: str
    callback_data: str | None = None
    url: str | None = None


@dataclass
class Reply:
    text: str
    buttons: list[list[Button]] = field(default_factory=list)
    # True: answer the callback with a short toast instead of a new message
    alert: bool = False


def back_to_menu_row() -> list[Button]:
    return [Button("🔙 В главное меню", callback_data=CB_MAIN_MENU)]
