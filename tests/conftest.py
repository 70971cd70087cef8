"""Shared fixtures: in-memory SQLite, a scripted payment gateway and a recording notifier."""
import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:test-token")
os.environ.setdefault("ADMIN_TELEGRAM_ID", "999")
os.environ.setdefault("YOOKASSA_SHOP_ID", "shop-1")
os.environ.setdefault("YOOKASSA_SECRET_KEY", "test-secret")
os.environ.setdefault("ADMIN_UI_USERNAME", "owner")
os.environ.setdefault("ADMIN_UI_PASSWORD", "s3cret-pass-for-tests")
os.environ.setdefault("ADMIN_UI_SESSION_SECRET", "session-secret-for-tests-only")

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from keyshop.core.errors import GatewayError  # noqa: E402
from keyshop.db.init_db import Base  # noqa: E402  (imports every model)
from keyshop.payments.gateway import CreatedPayment, PaymentStatus  # noqa: E402
from keyshop.services.notifications.service import Notifier  # noqa: E402

ADMIN_ID = 999


class FakeGateway:
    """Payments live in a dict; tests flip their status with set_status()."""

    def __init__(self):
        self.statuses: dict[str, str] = {}
        self.created: list[dict] = []
        self.fail_create = False
        self.fail_status = False

    def create_payment(self, amount, description, metadata=None):
        if self.fail_create:
            raise GatewayError("gateway returned 500", http_status=500)
        payment_id = f"pay-{len(self.created) + 1}"
        self.created.append({"id": payment_id, "amount": amount, "description": description, "metadata": metadata})
        self.statuses[payment_id] = "pending"
        return CreatedPayment(id=payment_id, status="pending", confirmation_url=f"https://yoomoney.ru/checkout/{payment_id}")

    def get_payment_status(self, payment_id):
        if self.fail_status or self.statuses.get(payment_id) == "error":
            raise GatewayError("gateway timeout")
        return PaymentStatus(id=payment_id, status=self.statuses[payment_id])

    def set_status(self, payment_id, status):
        self.statuses[payment_id] = status


class RecordingSender:
    def __init__(self):
        self.sent: list[tuple[int, str]] = []

    def __call__(self, chat_id, text):
        self.sent.append((chat_id, text))

    def to(self, chat_id) -> list[str]:
        return [text for cid, text in self.sent if cid == chat_id]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return Notifier(sender=sender, admin_chat_id=ADMIN_ID)


@pytest.fixture
def bus():
    return MagicMock()


@pytest.fixture
def make_product(db):
    from keyshop.services.keys.service import KeyStoreService
    from keyshop.services.products.service import ProductService

    def _make(name="Minecraft Java", price=1999, keys=(), enabled=True):
        product = ProductService(db).create(name, price, enabled=enabled)
        KeyStoreService(db).add_keys(product.id, list(keys))
        db.commit()
        return product

    return _make


@pytest.fixture
def make_user(db):
    from keyshop.services.users.service import UserService

    def _make(telegram_id=1001, username="buyer", display_name="Test Buyer"):
        user = UserService(db).get_or_create_user(telegram_id, username, display_name)
        db.commit()
        return user

    return _make
