import logging

from sqlalchemy.orm import Session

from keyshop.core.errors import NotFound
from keyshop.models.license_key import LicenseKey
from keyshop.models.product import Product

logger = logging.getLogger(__name__)

DEMO_PRODUCT_NAME = "Minecraft Java"
DEMO_PRODUCT_PRICE = 1999
DEMO_KEY_VALUE = "DEMO-KEY-12345"


class ProductService:
    def __init__(self, db: Session):
        self.db = db

    def list_active(self) -> list[Product]:
        return (
            self.db.query(Product)
            .filter(Product.enabled.is_(True))
            .order_by(Product.id)
            .all()
        )

    def list_all(self) -> list[Product]:
        return self.db.query(Product).order_by(Product.id).all()

    def get(self, product_id: int) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        if not product:
            raise NotFound("product", product_id)
        return product

    def create(self, name: str, price: int, description: str | None = None, enabled: bool = True) -> Product:
        if price <= 0:
            raise ValueError("price must be positive")
        product = Product(name=name.strip(), price=int(price), description=description, enabled=enabled)
        self.db.add(product)
        self.db.flush()
        logger.info("product_created", extra={"product_id": product.id, "amount": product.price})
        return product

    def set_enabled(self, product_id: int, enabled: bool) -> Product:
        product = self.get(product_id)
        product.enabled = enabled
        self.db.add(product)
        self.db.flush()
        return product

    def seed_demo(self) -> None:
        """Один демо-товар с одним ключом, только в пустой каталог."""
        if self.db.query(Product).count() > 0:
            return
        product = self.create(DEMO_PRODUCT_NAME, DEMO_PRODUCT_PRICE, "Оригинальная лицензия")
        self.db.add(LicenseKey(product_id=product.id, value=DEMO_KEY_VALUE, used=False))
        self.db.flush()
        logger.info("demo_catalog_seeded", extra={"product_id": product.id})
