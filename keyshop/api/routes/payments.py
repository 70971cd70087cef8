"""
YooKassa HTTP notifications.

The body is only a hint which payment changed: the status is fetched again
from the gateway and the same idempotent settlement as the "check payment"
button is applied. YooKassa retries non-2xx answers, so a gateway failure
is reported as 502.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from keyshop.api.deps import gateway_dep, notifier_dep
from keyshop.core.errors import GatewayError
from keyshop.db.session import get_db
from keyshop.payments.gateway import YooKassaClient, parse_notification
from keyshop.services.notifications.service import Notifier
from keyshop.services.shop.outcomes import SettlementOutcome
from keyshop.services.shop.service import ShopService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _settle(db: Session, gateway: YooKassaClient, notifier: Notifier, payment_id: str) -> SettlementOutcome | None:
    try:
        return ShopService(db, gateway=gateway, notifier=notifier).apply_gateway_event(payment_id)
    except GatewayError:
        db.rollback()
        raise


@router.post("/webhook")
async def yookassa_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: YooKassaClient = Depends(gateway_dep),
    notifier: Notifier = Depends(notifier_dep),
) -> dict:
    try:
        body = await request.json()
        event, payment_id = parse_notification(body)
    except ValueError as e:
        logger.warning("webhook_malformed", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="malformed notification")

    try:
        # gateway HTTP and DB work are blocking
        outcome = await asyncio.to_thread(_settle, db, gateway, notifier, payment_id)
    except GatewayError as e:
        logger.error("webhook_gateway_error", extra={"payment_id": payment_id, "error": str(e)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="gateway unavailable")

    logger.info(
        "webhook_processed",
        extra={"payment_id": payment_id, "kind": event, "status": outcome.value if outcome else "ignored"},
    )
    return {"status": outcome.value if outcome else "ignored"}
