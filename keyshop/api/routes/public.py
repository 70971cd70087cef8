"""
Public JSON endpoints for the storefront site: catalog, stats and support tickets.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from keyshop.api.deps import notifier_dep
from keyshop.db.session import get_db
from keyshop.schemas.public import ProductOut, StatsOut, TicketIn
from keyshop.services.notifications.service import Notifier
from keyshop.services.stats.service import StatsService
from keyshop.services.support.service import SupportService

router = APIRouter(prefix="/api", tags=["public"])


@router.get("/products", response_model=list[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return StatsService(db).products_with_stock()


@router.get("/stats", response_model=StatsOut)
def stats(db: Session = Depends(get_db)):
    return StatsService(db).overview()


@router.post("/ticket")
def create_ticket(body: TicketIn, db: Session = Depends(get_db), notifier: Notifier = Depends(notifier_dep)) -> dict:
    try:
        SupportService(db, notifier=notifier).submit_ticket(body.name, body.email, body.message)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Все поля обязательны для заполнения",
        )
    return {"success": True}
