from sqlalchemy import Boolean, Column, Integer, String, Text

from keyshop.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # рубли, целое
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
