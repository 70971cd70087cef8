from sqlalchemy.orm import Session

from keyshop.core.errors import NotFound
from keyshop.models.user import ConversationState, User


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_or_create_user(
        self,
        telegram_id: int,
        username: str | None = None,
        display_name: str | None = None,
    ) -> User:
        """Created on first bot interaction; keeps the Telegram profile snapshot fresh."""
        user = self.get_by_telegram_id(telegram_id)
        if user:
            changed = False
            if username is not None and user.username != username:
                user.username = username
                changed = True
            if display_name is not None and user.display_name != display_name:
                user.display_name = display_name
                changed = True
            if changed:
                self.db.add(user)
                self.db.flush()
            return user
        user = User(
            telegram_id=telegram_id,
            username=username,
            display_name=display_name,
            balance=0,
            conversation_state=ConversationState.IDLE,
        )
        self.db.add(user)
        self.db.flush()
        return user

    def get_by_telegram_id(self, telegram_id: int) -> User | None:
        return self.db.query(User).filter(User.telegram_id == telegram_id).one_or_none()

    def require(self, telegram_id: int) -> User:
        user = self.get_by_telegram_id(telegram_id)
        if not user:
            raise NotFound("user", telegram_id)
        return user

    def count(self) -> int:
        return self.db.query(User).count()

    # ------------------------------------------------------------------
    # Conversation state (что бот ждёт следующим текстом)
    # ------------------------------------------------------------------

    def get_state(self, telegram_id: int) -> ConversationState:
        user = self.get_by_telegram_id(telegram_id)
        if not user or user.conversation_state is None:
            return ConversationState.IDLE
        return ConversationState(user.conversation_state)

    def set_state(self, telegram_id: int, state: ConversationState) -> None:
        user = self.get_or_create_user(telegram_id)
        user.conversation_state = state
        self.db.add(user)
        self.db.flush()

    def reset_state(self, telegram_id: int) -> None:
        self.set_state(telegram_id, ConversationState.IDLE)
