"""
Admin UI sessions.

The cookie only carries a signed session id; the session itself lives in
Redis under ``keyshop:admin-session:<id>``. Every authenticated request
slides the TTL, so an admin working in the support inbox is not logged out
mid-conversation.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import redis
from fastapi import Request, Response
from fastapi_sessions.backends.session_backend import SessionBackend
from fastapi_sessions.frontends.implementations import SessionCookie, CookieParameters
from pydantic import BaseModel, Field

from keyshop.core.config import settings

SESSION_KEY_PREFIX = "keyshop:admin-session:"
SESSION_COOKIE = "keyshop_admin"


class AdminSession(BaseModel):
    username: str
    logged_in_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AdminSessionStore(SessionBackend[UUID, AdminSession]):
    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds or settings.admin_ui_session_ttl

    @staticmethod
    def _key(session_id: UUID) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def create(self, session_id: UUID, data: AdminSession) -> None:
        self.client.setex(self._key(session_id), self.ttl_seconds, data.model_dump_json())

    async def read(self, session_id: UUID) -> Optional[AdminSession]:
        key = self._key(session_id)
        raw = self.client.get(key)
        if not raw:
            return None
        self.client.expire(key, self.ttl_seconds)
        return AdminSession.model_validate_json(raw)

    async def update(self, session_id: UUID, data: AdminSession) -> None:
        await self.create(session_id, data)

    async def delete(self, session_id: UUID) -> None:
        self.client.delete(self._key(session_id))


session_store = AdminSessionStore()

session_cookie = SessionCookie(
    cookie_name=SESSION_COOKIE,
    identifier=SESSION_COOKIE,
    auto_error=False,
    secret_key=settings.admin_ui_session_secret,
    cookie_params=CookieParameters(
        max_age=settings.admin_ui_session_ttl,
        samesite=settings.admin_ui_cookie_samesite,
        secure=settings.admin_ui_cookie_secure,
    ),
)


def _session_id(request: Request) -> Optional[UUID]:
    # a missing or forged cookie comes back as a FrontendError instance, not an exception
    session_id = session_cookie(request)
    return session_id if isinstance(session_id, UUID) else None


async def current_admin(request: Request) -> Optional[AdminSession]:
    session_id = _session_id(request)
    if session_id is None:
        return None
    return await session_store.read(session_id)


async def start_admin_session(response: Response, username: str) -> UUID:
    session_id = uuid4()
    await session_store.create(session_id, AdminSession(username=username))
    session_cookie.attach_to_response(response, session_id)
    return session_id


async def end_admin_session(request: Request, response: Response) -> None:
    session_id = _session_id(request)
    if session_id is not None:
        await session_store.delete(session_id)
    session_cookie.delete_from_response(response)
