"""
Live support chat bridge over Redis pub/sub.

Every message of an order thread (from the bot or the admin page) is
published to `support-chat:{order_id}`; open admin chat pages listen on a
websocket that relays the channel. The database stays the source of truth,
the bus only pushes updates.
"""
import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

import redis
import redis.asyncio as aioredis

from keyshop.core.config import settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "support-chat"


def channel_name(order_id: int) -> str:
    return f"{CHANNEL_PREFIX}:{order_id}"


def make_event(sender: str, text: str, time: datetime | None = None) -> dict:
    return {
        "sender": sender,
        "text": text,
        "time": (time or datetime.now(timezone.utc)).isoformat(),
    }


class ChatBus:
    def __init__(self, client: redis.Redis | None = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    def publish(self, order_id: int, sender: str, text: str, time: datetime | None = None) -> None:
        """Best-effort: a Redis outage must not break sending the message itself."""
        payload = json.dumps(make_event(sender, text, time), ensure_ascii=False)
        try:
            self.client.publish(channel_name(order_id), payload)
        except redis.RedisError as e:
            logger.warning("chat_publish_failed", extra={"order_id": order_id, "error": str(e)})


async def listen(order_id: int) -> AsyncIterator[str]:
    """Yield raw JSON events of one order thread until the consumer stops iterating."""
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    pubsub = client.pubsub()
    await pubsub.subscribe(channel_name(order_id))
    try:
        async for message in pubsub.listen():
            if message.get("type") == "message":
                yield message["data"]
    finally:
        await pubsub.unsubscribe(channel_name(order_id))
        await pubsub.aclose()
        await client.aclose()
