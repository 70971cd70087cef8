"""
Outbound Telegram messages (admin alerts, support replies) sent from a worker,
so a slow or failing Bot API never blocks a payment check or an admin request.
"""
import logging

from keyshop.core.celery_app import celery_app
from keyshop.services.telegram.client import TelegramClient

logger = logging.getLogger(__name__)


@celery_app.task(name="keyshop.workers.tasks.notify.send_telegram_message")
def send_telegram_message(chat_id: int, text: str) -> dict:
    """Fire-and-forget: delivery failures are logged, the task itself never fails."""
    telegram = TelegramClient()
    try:
        telegram.send_message(chat_id, text)
        return {"ok": True}
    except Exception as e:
        logger.warning("notify_failed", extra={"chat_id": chat_id, "error": str(e)})
        return {"ok": False, "error": str(e)}
    finally:
        telegram.close()
