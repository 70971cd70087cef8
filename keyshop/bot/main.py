"""
Telegram bot using aiogram 3.x (polling).
Handlers are thin: the work is done by BotFlows / ConversationDispatcher in a
worker thread, here we only translate Telegram updates and render replies.
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Generator

from aiogram import Bot, Dispatcher, F, Router
from aiogram.filters import Command, CommandStart
from aiogram.types import (
    CallbackQuery,
    ErrorEvent,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    Message,
    ReplyKeyboardMarkup,
    User as TelegramUser,
)
from sqlalchemy.orm import Session

from keyshop.bot.dispatcher import ConversationDispatcher
from keyshop.bot.flows import BotFlows
from keyshop.bot.replies import (
    BTN_HELP,
    BTN_KEYS,
    BTN_PROFILE,
    BTN_STEAM,
    BTN_SUBSCRIPTIONS,
    BTN_WALLET,
    CB_BUY,
    CB_CHECK,
    CB_CHECK_TOPUP,
    CB_CLOSE,
    CB_CREATE_TICKET,
    CB_HELP,
    CB_MAIN_MENU,
    CB_WALLET_RECHARGE,
    CB_WALLET_WITHDRAW,
    MAIN_MENU_ROWS,
    Button,
    Reply,
)
from keyshop.core.config import settings
from keyshop.core.logging import configure_logging
from keyshop.db.init_db import init_db
from keyshop.db.session import SessionLocal

configure_logging()
logger = logging.getLogger("bot")

GENERIC_ERROR_TEXT = "Произошла ошибка. Попробуйте позже."


# ===========================================
# Database session context manager
# ===========================================
@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.
    Handles commit on success and rollback on error.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _run_flow(method: str, *args) -> Reply:
    with get_db_session() as db:
        flows = BotFlows(db)
        if method == "handle_text":
            return ConversationDispatcher(flows).handle_text(*args)
        return getattr(flows, method)(*args)


async def call_flow(method: str, *args) -> Reply:
    """Blocking DB / gateway work off the event loop."""
    try:
        return await asyncio.to_thread(_run_flow, method, *args)
    except Exception:
        logger.exception("bot_flow_failed", extra={"method": method})
        return Reply(GENERIC_ERROR_TEXT)


# ===========================================
# Keyboards
# ===========================================
def main_menu_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=label) for label in row] for row in MAIN_MENU_ROWS],
        resize_keyboard=True,
    )


def inline_keyboard(rows: list[list[Button]]) -> InlineKeyboardMarkup | None:
    if not rows:
        return None
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=b.text, callback_data=b.callback_data, url=b.url) for b in row]
            for row in rows
        ]
    )


def _display_name(user: TelegramUser) -> str:
    return " ".join(part for part in (user.first_name, user.last_name) if part)


def _callback_id(data: str, prefix: str) -> int | None:
    raw = data[len(prefix):]
    return int(raw) if raw.isdigit() else None


async def send_reply(message: Message, reply: Reply, with_menu: bool = False) -> None:
    markup = main_menu_keyboard() if with_menu else inline_keyboard(reply.buttons)
    await message.answer(reply.text, reply_markup=markup)


async def answer_callback(callback: CallbackQuery, reply: Reply) -> None:
    if reply.alert:
        await callback.answer(reply.text)
        return
    await callback.answer()
    await callback.message.answer(reply.text, reply_markup=inline_keyboard(reply.buttons))


router = Router()


# ===========================================
# Menu
# ===========================================
@router.message(CommandStart())
async def cmd_start(message: Message):
    user = message.from_user
    reply = await call_flow("start", user.id, user.username, _display_name(user))
    await send_reply(message, reply, with_menu=True)


@router.message(Command("menu"))
async def cmd_menu(message: Message):
    reply = await call_flow("menu", message.from_user.id)
    await send_reply(message, reply, with_menu=True)


@router.callback_query(F.data == CB_MAIN_MENU)
async def cb_main_menu(callback: CallbackQuery):
    reply = await call_flow("menu", callback.from_user.id)
    await callback.answer()
    await send_reply(callback.message, reply, with_menu=True)


@router.message(F.text == BTN_KEYS)
async def menu_keys(message: Message):
    await send_reply(message, await call_flow("list_products", message.from_user.id))


@router.message(F.text == BTN_SUBSCRIPTIONS)
async def menu_subscriptions(message: Message):
    await send_reply(message, await call_flow("list_products", message.from_user.id, "💳 Выберите подписку:"))


@router.message(F.text == BTN_STEAM)
async def menu_steam(message: Message):
    await send_reply(message, await call_flow("steam_prompt", message.from_user.id))


@router.message(F.text == BTN_PROFILE)
async def menu_profile(message: Message):
    user = message.from_user
    await send_reply(message, await call_flow("profile", user.id, user.username, _display_name(user)))


@router.message(F.text == BTN_WALLET)
async def menu_wallet(message: Message):
    user = message.from_user
    await send_reply(message, await call_flow("wallet_menu", user.id, user.username, _display_name(user)))


@router.message(F.text == BTN_HELP)
async def menu_help(message: Message):
    await send_reply(message, await call_flow("help", message.from_user.id))


# ===========================================
# Inline callbacks (order matters: check_topup_ before check_)
# ===========================================
@router.callback_query(F.data.startswith(CB_CHECK_TOPUP))
async def cb_check_topup(callback: CallbackQuery):
    top_up_id = _callback_id(callback.data, CB_CHECK_TOPUP)
    if top_up_id is None:
        await callback.answer("❌")
        return
    await answer_callback(callback, await call_flow("check_topup", callback.from_user.id, top_up_id))


@router.callback_query(F.data.startswith(CB_BUY))
async def cb_buy(callback: CallbackQuery):
    product_id = _callback_id(callback.data, CB_BUY)
    if product_id is None:
        await callback.answer("❌")
        return
    await answer_callback(callback, await call_flow("buy", callback.from_user.id, product_id))


@router.callback_query(F.data.startswith(CB_CHECK))
async def cb_check(callback: CallbackQuery):
    order_id = _callback_id(callback.data, CB_CHECK)
    if order_id is None:
        await callback.answer("❌")
        return
    reply = await call_flow("check_order", callback.from_user.id, order_id)
    if reply.alert:
        await callback.answer(reply.text)
        return
    await callback.answer()
    await callback.message.edit_text(reply.text, reply_markup=inline_keyboard(reply.buttons))


@router.callback_query(F.data.startswith(CB_CLOSE))
async def cb_close(callback: CallbackQuery):
    order_id = _callback_id(callback.data, CB_CLOSE)
    if order_id is None:
        await callback.answer("❌")
        return
    await answer_callback(callback, await call_flow("close_order", callback.from_user.id, order_id))


@router.callback_query(F.data.startswith(CB_HELP))
async def cb_help(callback: CallbackQuery):
    order_id = _callback_id(callback.data, CB_HELP)
    if order_id is None:
        await callback.answer("❌")
        return
    await answer_callback(callback, await call_flow("open_support", callback.from_user.id, order_id))


@router.callback_query(F.data == CB_CREATE_TICKET)
async def cb_create_ticket(callback: CallbackQuery):
    await answer_callback(callback, await call_flow("ticket_prompt", callback.from_user.id))


@router.callback_query(F.data == CB_WALLET_RECHARGE)
async def cb_wallet_recharge(callback: CallbackQuery):
    await answer_callback(callback, await call_flow("wallet_recharge_prompt", callback.from_user.id))


@router.callback_query(F.data == CB_WALLET_WITHDRAW)
async def cb_wallet_withdraw(callback: CallbackQuery):
    await answer_callback(callback, await call_flow("withdraw_prompt", callback.from_user.id))


# ===========================================
# Free text: amounts, support messages
# ===========================================
@router.message(F.text)
async def on_text(message: Message):
    user = message.from_user
    reply = await call_flow("handle_text", user.id, message.text, user.username, _display_name(user))
    await send_reply(message, reply)


async def on_error(event: ErrorEvent, *args, **kwargs):
    """Global error handler."""
    logger.exception(
        "Error in handler",
        extra={"error": str(event.exception)},
    )


async def main():
    """Start the bot."""
    logger.info("Starting bot...")
    # unreachable database aborts startup
    await asyncio.to_thread(init_db, settings.seed_demo_catalog)

    bot = Bot(token=settings.telegram_bot_token)
    dp = Dispatcher()
    dp.errors.register(on_error)
    dp.include_router(router)

    # Delete webhook if exists (we use polling)
    await bot.delete_webhook(drop_pending_updates=True)
    try:
        await dp.start_polling(bot)
    finally:
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
