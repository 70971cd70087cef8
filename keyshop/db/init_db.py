import logging

from keyshop.db.base import Base
from keyshop.db.session import SessionLocal, check_database, engine

# models must be imported so that metadata knows every table
from keyshop.models.user import User  # noqa: F401
from keyshop.models.product import Product  # noqa: F401
from keyshop.models.order import Order  # noqa: F401
from keyshop.models.license_key import LicenseKey  # noqa: F401
from keyshop.models.support_message import SupportMessage  # noqa: F401
from keyshop.models.wallet_transaction import WalletTransaction  # noqa: F401
from keyshop.models.top_up import TopUp  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(seed_demo: bool = False) -> None:
    """
    Verify connectivity and create missing tables.
    An unreachable database is fatal: the exception propagates and startup aborts.
    """
    check_database()
    Base.metadata.create_all(bind=engine)
    logger.info("db_initialized")
    if seed_demo:
        from keyshop.services.products.service import ProductService

        db = SessionLocal()
        try:
            ProductService(db).seed_demo()
            db.commit()
        finally:
            db.close()
