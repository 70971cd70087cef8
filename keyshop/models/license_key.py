"""
LicenseKey: пул ключей товара.
Ключ переходит free -> used ровно один раз и никогда не удаляется.
Инвариант: used == True <=> order_id is not None.
"""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String

from keyshop.db.base import Base


class LicenseKey(Base):
    __tablename__ = "license_keys"
    __table_args__ = (
        CheckConstraint(
            "(used = false AND order_id IS NULL) OR (used = true AND order_id IS NOT NULL)",
            name="ck_license_keys_used_order",
        ),
        Index("ix_license_keys_product_free", "product_id", "used"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    value = Column(String, unique=True, nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, unique=True)
