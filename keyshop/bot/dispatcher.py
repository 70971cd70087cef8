"""
Routing of free-text messages by the user's conversation state.

The state lives on User.conversation_state, so it survives bot restarts and
is shared by every bot process; menu buttons reset it to IDLE.
"""
import logging
from typing import Callable

from keyshop.bot.flows import BotFlows
from keyshop.bot.replies import UNKNOWN_TEXT, Reply
from keyshop.models.user import ConversationState

logger = logging.getLogger("bot")


class ConversationDispatcher:
    def __init__(self, flows: BotFlows):
        self.flows = flows
        self._handlers: dict[ConversationState, Callable[[int, str, str | None, str | None], Reply]] = {
            ConversationState.IDLE: self._idle,
            ConversationState.AWAITING_STEAM_AMOUNT: lambda tg, text, *_: flows.steam_amount(tg, text),
            ConversationState.AWAITING_WALLET_AMOUNT: lambda tg, text, *_: flows.wallet_amount(tg, text),
            ConversationState.AWAITING_WITHDRAW_AMOUNT: lambda tg, text, *_: flows.withdraw_amount(tg, text),
            ConversationState.AWAITING_SUPPORT_MESSAGE: flows.support_text,
        }

    def handle_text(
        self,
        telegram_id: int,
        text: str,
        username: str | None = None,
        display_name: str | None = None,
    ) -> Reply:
        self.flows.users.get_or_create_user(telegram_id, username, display_name)
        state = self.flows.users.get_state(telegram_id)
        logger.info("bot_text", extra={"telegram_id": telegram_id, "status": state.value})
        return self._handlers[state](telegram_id, text, username, display_name)

    def _idle(self, telegram_id: int, text: str, username: str | None, display_name: str | None) -> Reply:
        # в IDLE текст уходит в открытый чат поддержки, если он есть
        reply = self.flows.thread_text(telegram_id, text)
        return reply or Reply(UNKNOWN_TEXT)
