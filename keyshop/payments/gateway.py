"""
YooKassa payment gateway adapter (REST API v3).

create_payment: POST {api}/payments, redirect confirmation, capture=true.
get_payment_status: GET {api}/payments/{id}.
Any transport problem, non-2xx answer, malformed body or open circuit breaker
surfaces as GatewayError; details go to the log, never to the user.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx
import pybreaker

from keyshop.core.config import settings
from keyshop.core.errors import GatewayError
from keyshop.utils.metrics import gateway_request_duration_seconds, gateway_requests_total

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_WAITING_FOR_CAPTURE = "waiting_for_capture"
STATUS_SUCCEEDED = "succeeded"
STATUS_CANCELED = "canceled"

SETTLED_STATUSES = frozenset({STATUS_SUCCEEDED, STATUS_WAITING_FOR_CAPTURE})

# Тело ошибки в логе обрезаем: ЮKassa иногда отвечает HTML от балансировщика
_LOGGED_BODY_LIMIT = 1000


def is_settled(status: str | None) -> bool:
    return status in SETTLED_STATUSES


def is_failed(status: str | None) -> bool:
    return status == STATUS_CANCELED


def format_amount(amount) -> str:
    return f"{Decimal(str(amount)):.2f}"


@dataclass
class CreatedPayment:
    id: str
    status: str
    confirmation_url: str | None


@dataclass
class PaymentStatus:
    id: str
    status: str
    amount: Decimal | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def settled(self) -> bool:
        return is_settled(self.status)

    @property
    def failed(self) -> bool:
        return is_failed(self.status)


def parse_notification(body: Any) -> tuple[str, str]:
    """
    Webhook body -> (event, payment_id).
    Only a hint: the caller re-fetches the payment before acting on it.
    """
    if not isinstance(body, dict):
        raise ValueError("notification body must be an object")
    event = body.get("event")
    obj = body.get("object")
    if not isinstance(event, str) or not isinstance(obj, dict):
        raise ValueError("notification has no event/object")
    payment_id = obj.get("id")
    if not isinstance(payment_id, str) or not payment_id:
        raise ValueError("notification object has no id")
    return event, payment_id


class YooKassaClient:
    """
    Sync client (used from FastAPI handlers, bot threads and Celery workers).
    `transport` is for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        shop_id: str | None = None,
        secret_key: str | None = None,
        api_url: str | None = None,
        return_url: str | None = None,
        currency: str | None = None,
        timeout: float | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.shop_id = shop_id if shop_id is not None else settings.yookassa_shop_id
        self.secret_key = secret_key if secret_key is not None else settings.yookassa_secret_key
        self.api_url = (api_url or settings.yookassa_api_url).rstrip("/")
        self.return_url = return_url if return_url is not None else settings.payment_return_url
        self.currency = currency or settings.payment_currency
        self.timeout = timeout if timeout is not None else settings.payment_timeout_seconds
        self.breaker = breaker
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                auth=(self.shop_id, self.secret_key),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_payment(self, amount, description: str, metadata: dict[str, Any] | None = None) -> CreatedPayment:
        body = {
            "amount": {"value": format_amount(amount), "currency": self.currency},
            "confirmation": {"type": "redirect", "return_url": self.return_url},
            "capture": True,
            "description": description,
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
        }
        headers = {"Idempotence-Key": str(uuid.uuid4())}
        data = self._call("create_payment", "POST", "/payments", json=body, headers=headers)
        try:
            payment_id = data["id"]
            status = data["status"]
        except (KeyError, TypeError):
            raise GatewayError("malformed create_payment response", body=str(data)[:_LOGGED_BODY_LIMIT])
        confirmation = data.get("confirmation") or {}
        confirmation_url = confirmation.get("confirmation_url") if isinstance(confirmation, dict) else None
        logger.info("payment_created", extra={"payment_id": payment_id, "status": status, "amount": body["amount"]["value"]})
        return CreatedPayment(id=payment_id, status=status, confirmation_url=confirmation_url)

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        data = self._call("get_payment", "GET", f"/payments/{payment_id}")
        try:
            status = data["status"]
        except (KeyError, TypeError):
            raise GatewayError("malformed get_payment response", body=str(data)[:_LOGGED_BODY_LIMIT])
        amount = None
        raw_amount = data.get("amount")
        if isinstance(raw_amount, dict) and raw_amount.get("value") is not None:
            amount = Decimal(str(raw_amount["value"]))
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        return PaymentStatus(id=data.get("id", payment_id), status=status, amount=amount, metadata=metadata)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _call(self, method_name: str, http_method: str, path: str, **kwargs) -> dict:
        if self.breaker is None:
            return self._request(method_name, http_method, path, **kwargs)
        try:
            return self.breaker.call(self._request, method_name, http_method, path, **kwargs)
        except pybreaker.CircuitBreakerError:
            gateway_requests_total.labels(method=method_name, status="circuit_open").inc()
            logger.warning("gateway_circuit_open", extra={"method": method_name, "path": path})
            raise GatewayError("payment gateway circuit is open")

    def _request(self, method_name: str, http_method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}{path}"
        start = time.time()
        try:
            resp = self.client.request(http_method, url, **kwargs)
        except httpx.TimeoutException as e:
            self._record(method_name, "timeout", start)
            logger.error("gateway_timeout", extra={"method": method_name, "path": path, "error": str(e)})
            raise GatewayError(f"gateway timeout: {e}")
        except httpx.HTTPError as e:
            self._record(method_name, "transport_error", start)
            logger.error("gateway_transport_error", extra={"method": method_name, "path": path, "error": str(e)})
            raise GatewayError(f"gateway transport error: {e}")

        if not resp.is_success:
            self._record(method_name, str(resp.status_code), start)
            body = resp.text[:_LOGGED_BODY_LIMIT]
            logger.error(
                "gateway_http_error",
                extra={"method": method_name, "path": path, "status_code": resp.status_code, "error": body},
            )
            raise GatewayError(f"gateway returned {resp.status_code}", http_status=resp.status_code, body=body)
        try:
            data = resp.json()
        except ValueError:
            self._record(method_name, "malformed", start)
            body = resp.text[:_LOGGED_BODY_LIMIT]
            logger.error("gateway_malformed_response", extra={"method": method_name, "path": path, "error": body})
            raise GatewayError("gateway returned non-JSON body", http_status=resp.status_code, body=body)
        if not isinstance(data, dict):
            self._record(method_name, "malformed", start)
            raise GatewayError("gateway returned non-object JSON", http_status=resp.status_code, body=resp.text[:_LOGGED_BODY_LIMIT])
        self._record(method_name, "success", start)
        return data

    def _record(self, method: str, status: str, start: float) -> None:
        gateway_requests_total.labels(method=method, status=status).inc()
        gateway_request_duration_seconds.labels(method=method).observe(time.time() - start)


_gateway: YooKassaClient | None = None


def get_gateway() -> YooKassaClient:
    """Process-wide client guarded by the shared "yookassa" breaker."""
    global _gateway
    if _gateway is None:
        from keyshop.services.circuit_breaker import get_circuit_breaker

        _gateway = YooKassaClient(breaker=get_circuit_breaker("yookassa"))
    return _gateway
