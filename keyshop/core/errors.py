"""
Domain errors of the shop.

Every error carries a short user-facing message; handlers at the boundary
(bot, HTTP routes) log the details and show only `user_message`.
"""
from decimal import Decimal
from typing import Any


class ShopError(Exception):
    code = "shop_error"
    user_message = "Произошла ошибка. Попробуйте позже."

    def __init__(self, message: str = "", detail: dict[str, Any] | None = None):
        super().__init__(message or self.code)
        self.detail = detail or {}


class NotFound(ShopError):
    code = "not_found"
    user_message = "❌ Не найдено."

    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(f"{entity} not found: {entity_id}", {"entity": entity, "entity_id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class OutOfStock(ShopError):
    code = "out_of_stock"
    user_message = "❌ Нет в наличии"

    def __init__(self, product_id: int):
        super().__init__(f"no free keys for product {product_id}", {"product_id": product_id})
        self.product_id = product_id


class AlreadyUsed(ShopError):
    """Lost the race for a key: somebody reserved it first."""

    code = "already_used"
    user_message = "Ключ больше не доступен"

    def __init__(self, key_id: int):
        super().__init__(f"key {key_id} is already used", {"key_id": key_id})
        self.key_id = key_id


class DuplicateKey(ShopError):
    code = "duplicate_key"
    user_message = "Такой ключ уже есть в базе."

    def __init__(self, value: str):
        super().__init__(f"duplicate key value: {value}", {"value": value})
        self.value = value


class InsufficientFunds(ShopError):
    code = "insufficient_funds"
    user_message = "❌ Недостаточно средств на кошельке."

    def __init__(self, balance: Decimal, requested: Decimal):
        super().__init__(
            f"balance {balance} is less than {requested}",
            {"balance": str(balance), "requested": str(requested)},
        )
        self.balance = balance
        self.requested = requested


class InvalidAmount(ShopError):
    code = "invalid_amount"
    user_message = "❌ Пожалуйста, введите корректную сумму (положительное число)"

    def __init__(self, raw: Any):
        super().__init__(f"invalid amount: {raw!r}", {"raw": str(raw)})
        self.raw = raw


class GatewayError(ShopError):
    """Non-2xx, malformed response, timeout or open circuit on the payment gateway."""

    code = "gateway_error"
    user_message = "Ошибка платежа. Попробуйте позже."

    def __init__(self, message: str, http_status: int | None = None, body: str | None = None):
        super().__init__(message, {"http_status": http_status, "body": body})
        self.http_status = http_status
        self.body = body
