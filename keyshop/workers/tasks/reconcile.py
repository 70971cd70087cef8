"""
Periodic safety net for payments nobody came back to check:
pending orders and top-ups with a gateway payment are re-checked through
the same idempotent path as the bot button and the webhook.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from keyshop.core.celery_app import celery_app
from keyshop.core.config import settings
from keyshop.core.errors import ShopError
from keyshop.db.session import SessionLocal
from keyshop.services.orders.service import OrderService
from keyshop.services.shop.service import ShopService
from keyshop.services.topups.service import TopUpService

logger = logging.getLogger(__name__)


def reconcile(db, shop: ShopService) -> dict:
    """One pass; a failure on one payment is logged and does not stop the others."""
    checked = 0
    failed = 0
    payment_ids = [o.payment_id for o in OrderService(db).list_pending_with_payment(settings.reconcile_window_hours)]
    payment_ids += [
        t.payment_id
        for t in TopUpService(db, gateway=shop.gateway, notifier=shop.notifier).list_pending_with_payment(
            settings.reconcile_window_hours
        )
    ]
    for payment_id in payment_ids:
        try:
            shop.apply_gateway_event(payment_id)
            checked += 1
        except (ShopError, SQLAlchemyError) as e:
            db.rollback()
            failed += 1
            logger.warning("reconcile_item_failed", extra={"payment_id": payment_id, "error": str(e)})
    result = {"checked": checked, "failed": failed}
    logger.info("reconcile_completed", extra={"status": result})
    return result


@celery_app.task(name="keyshop.workers.tasks.reconcile.reconcile_pending_payments")
def reconcile_pending_payments() -> dict:
    db = SessionLocal()
    try:
        return reconcile(db, ShopService(db))
    finally:
        db.close()
