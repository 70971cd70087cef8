"""
Main FastAPI application for the key shop.
Serves health, public storefront API, YooKassa webhook, admin-ui (HTML), and metrics.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from keyshop.admin.ui import router as admin_ui_router
from keyshop.api.routes import health, payments, public
from keyshop.core.config import settings
from keyshop.core.logging import configure_logging
from keyshop.db.init_db import init_db
from keyshop.utils.metrics import router as metrics_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # unreachable database aborts startup
    init_db(seed_demo=settings.seed_demo_catalog)
    yield


configure_logging()

app = FastAPI(
    title="Keyshop API",
    description="Storefront API, payment webhook and admin UI for the key shop bot",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(public.router)
app.include_router(payments.router)
app.include_router(admin_ui_router)
app.include_router(metrics_router)
