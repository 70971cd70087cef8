import logging
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from keyshop.core.errors import AlreadyUsed, DuplicateKey, NotFound
from keyshop.models.license_key import LicenseKey
from keyshop.models.product import Product

logger = logging.getLogger(__name__)


class KeyStoreService:
    """Пул лицензионных ключей. Единственная точка сериализации: reserve()."""

    def __init__(self, db: Session):
        self.db = db

    def add_key(self, product_id: int, value: str) -> LicenseKey:
        value = (value or "").strip()
        if not value:
            raise ValueError("key value must not be empty")
        if not self.db.query(Product.id).filter(Product.id == product_id).first():
            raise NotFound("product", product_id)
        if self._value_exists(value):
            raise DuplicateKey(value)
        key = LicenseKey(product_id=product_id, value=value, used=False)
        try:
            # savepoint: a conflict undoes this row only, not keys added earlier in the batch
            with self.db.begin_nested():
                self.db.add(key)
        except IntegrityError:
            # concurrent insert of the same value
            raise DuplicateKey(value)
        logger.info("key_added", extra={"product_id": product_id, "key_id": key.id})
        return key

    def add_keys(self, product_id: int, values: list[str]) -> tuple[int, list[str]]:
        """Bulk add. Returns (added_count, duplicate_values); empty lines are skipped."""
        added = 0
        duplicates: list[str] = []
        seen: set[str] = set()
        for raw in values:
            value = (raw or "").strip()
            if not value:
                continue
            if value in seen:
                duplicates.append(value)
                continue
            seen.add(value)
            try:
                self.add_key(product_id, value)
                added += 1
            except DuplicateKey:
                duplicates.append(value)
        return added, duplicates

    def find_free_key(self, product_id: int) -> LicenseKey:
        """
        Any unused key of the product.
        SKIP LOCKED: a row locked by a concurrent reservation is not handed out twice (PostgreSQL).
        """
        key = (
            self.db.query(LicenseKey)
            .filter(LicenseKey.product_id == product_id, LicenseKey.used == False)  # noqa: E712
            .order_by(LicenseKey.id)
            .with_for_update(skip_locked=True)
            .first()
        )
        if key is None:
            raise NotFound("free_key", product_id)
        return key

    def reserve(self, key_id: int, order_id: int) -> None:
        """Conditional update: at most one caller wins, the rest get AlreadyUsed."""
        result = self.db.execute(
            update(LicenseKey)
            .where(LicenseKey.id == key_id, LicenseKey.used == False)  # noqa: E712
            .values(used=True, used_at=datetime.now(timezone.utc), order_id=order_id)
        )
        self.db.flush()
        if result.rowcount == 0:
            logger.warning("key_reserve_lost", extra={"key_id": key_id, "order_id": order_id})
            raise AlreadyUsed(key_id)
        logger.info("key_reserved", extra={"key_id": key_id, "order_id": order_id})

    def list_keys(self, product_id: int | None = None, only_free: bool = False) -> list[LicenseKey]:
        q = self.db.query(LicenseKey)
        if product_id is not None:
            q = q.filter(LicenseKey.product_id == product_id)
        if only_free:
            q = q.filter(LicenseKey.used == False)  # noqa: E712
        return q.order_by(LicenseKey.id.desc()).all()

    def count_free(self, product_id: int | None = None) -> int:
        q = self.db.query(func.count(LicenseKey.id)).filter(LicenseKey.used == False)  # noqa: E712
        if product_id is not None:
            q = q.filter(LicenseKey.product_id == product_id)
        return q.scalar() or 0

    def _value_exists(self, value: str) -> bool:
        return self.db.query(LicenseKey.id).filter(LicenseKey.value == value).first() is not None
