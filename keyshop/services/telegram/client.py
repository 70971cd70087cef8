"""
Telegram client wrapper using httpx sync client.
Provides sync interface for Celery workers (no event loop issues).
"""
import logging
import time

import httpx

from keyshop.core.config import settings
from keyshop.utils.metrics import (
    telegram_requests_total,
    telegram_request_duration_seconds,
)


logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramAPIError(Exception):
    def __init__(self, method: str, error_code: int, description: str):
        super().__init__(f"{method} -> {error_code}: {description}")
        self.method = method
        self.error_code = error_code
        self.description = description


class TelegramClient:
    """
    Sync Telegram client for Celery workers.
    Only what the shop needs: plain text messages (alerts, support replies, keys).
    """

    def __init__(self, token: str | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self._token = token or settings.telegram_bot_token
        self._base_url = f"{TELEGRAM_API_BASE}/bot{self._token}"
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=30.0, transport=self._transport)
        return self._client

    def _record_request(self, method: str, status: str, duration: float) -> None:
        telegram_requests_total.labels(method=method, status=status).inc()
        telegram_request_duration_seconds.labels(method=method).observe(duration)

    def _api_call(self, method: str, data: dict) -> dict:
        url = f"{self._base_url}/{method}"
        resp = self.client.post(url, json=data)
        result = resp.json()
        if not result.get("ok"):
            error_desc = result.get("description", "Unknown error")
            error_code = result.get("error_code", 0)
            logger.warning("telegram_api_error", extra={"method": method, "status_code": error_code, "error": error_desc})
            raise TelegramAPIError(method, error_code, error_desc)
        return result

    def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: dict | None = None,
        parse_mode: str | None = None,
    ) -> dict:
        """Send text message to chat. Texts over the Telegram limit are cut."""
        start = time.time()
        try:
            data = {"chat_id": int(chat_id), "text": text[:MAX_MESSAGE_LENGTH]}
            if reply_markup:
                data["reply_markup"] = reply_markup
            if parse_mode:
                data["parse_mode"] = parse_mode
            result = self._api_call("sendMessage", data)
            self._record_request("sendMessage", "success", time.time() - start)
            return result
        except Exception as e:
            self._record_request("sendMessage", "error", time.time() - start)
            logger.error("telegram_send_failed", extra={"error": str(e), "chat_id": chat_id})
            raise

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except httpx.HTTPError as e:
                logger.warning("telegram_client_close_failed", extra={"error": str(e)})
            finally:
                self._client = None
