import asyncio
import hashlib
import hmac
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, RedirectResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from starlette.templating import Jinja2Templates

from keyshop.admin.session import current_admin, end_admin_session, start_admin_session
from keyshop.core.config import settings
from keyshop.core.errors import NotFound
from keyshop.db.session import get_db
from keyshop.services.auth.login_rate_limit import (
    check_login_rate_limit,
    get_client_ip,
    reset_login_attempts,
)
from keyshop.services.keys.service import KeyStoreService
from keyshop.services.orders.service import OrderService
from keyshop.services.products.service import ProductService
from keyshop.services.stats.service import StatsService
from keyshop.services.support import chat_bus
from keyshop.services.support.service import SupportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin-ui", tags=["admin-ui"])
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


async def require_login(request: Request) -> RedirectResponse | None:
    session = await current_admin(request)
    if not session:
        return RedirectResponse(url="/admin-ui/login", status_code=303)
    return None


def _password_ok(password: str) -> bool:
    if settings.admin_ui_password_hash_sha256:
        digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, settings.admin_ui_password_hash_sha256)
    return hmac.compare_digest(password.encode("utf-8"), settings.admin_ui_password.encode("utf-8"))


def _not_found(request: Request, message: str) -> HTMLResponse:
    return templates.TemplateResponse(request, "error.html", {"message": message}, status_code=404)


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "login.html", {"error": request.query_params.get("error")})


@router.post("/login")
async def login(request: Request, username: str = Form(...), password: str = Form(...)) -> RedirectResponse:
    client_ip = get_client_ip(request)
    if not check_login_rate_limit(client_ip):
        return RedirectResponse(url="/admin-ui/login?error=rate_limit", status_code=303)

    if hmac.compare_digest(username.encode("utf-8"), settings.admin_ui_username.encode("utf-8")) and _password_ok(password):
        reset_login_attempts(client_ip)
        response = RedirectResponse(url="/admin-ui", status_code=303)
        await start_admin_session(response, username)
        logger.info("admin_login", extra={"path": "/admin-ui/login"})
        return response
    logger.warning("admin_login_failed", extra={"path": "/admin-ui/login"})
    return RedirectResponse(url="/admin-ui/login?error=1", status_code=303)


@router.get("/logout")
async def logout(request: Request) -> RedirectResponse:
    response = RedirectResponse(url="/admin-ui/login", status_code=303)
    await end_admin_session(request, response)
    return response


@router.get("", response_class=HTMLResponse)
async def dashboard(request: Request, db: Session = Depends(get_db)) -> HTMLResponse:
    redirect = await require_login(request)
    if redirect:
        return redirect
    stats = StatsService(db)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"stats": stats.overview(), "products": stats.products_with_stock(only_enabled=False)},
    )


@router.get("/keys", response_class=HTMLResponse)
async def keys_page(request: Request, db: Session = Depends(get_db)) -> HTMLResponse:
    redirect = await require_login(request)
    if redirect:
        return redirect
    products = {p.id: p for p in ProductService(db).list_all()}
    return templates.TemplateResponse(
        request,
        "keys.html",
        {
            "products": products,
            "keys": KeyStoreService(db).list_keys(),
            "added": request.query_params.get("added"),
            "duplicates": request.query_params.get("duplicates"),
        },
    )


@router.post("/keys")
async def add_keys(
    request: Request,
    product_id: int = Form(...),
    keys: str = Form(...),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """One key per line; duplicates are skipped and counted."""
    redirect = await require_login(request)
    if redirect:
        return redirect
    try:
        added, duplicates = KeyStoreService(db).add_keys(product_id, keys.splitlines())
    except NotFound:
        return _not_found(request, "Товар не найден")
    db.commit()
    logger.info("admin_keys_added", extra={"product_id": product_id, "amount": added})
    return RedirectResponse(url=f"/admin-ui/keys?added={added}&duplicates={len(duplicates)}", status_code=303)


@router.get("/support", response_class=HTMLResponse)
async def support_inbox(request: Request, db: Session = Depends(get_db)) -> HTMLResponse:
    redirect = await require_login(request)
    if redirect:
        return redirect
    return templates.TemplateResponse(request, "support.html", {"threads": OrderService(db).list_open_support_threads()})


@router.get("/chat/{order_id}", response_class=HTMLResponse)
async def chat_page(request: Request, order_id: int, db: Session = Depends(get_db)) -> HTMLResponse:
    redirect = await require_login(request)
    if redirect:
        return redirect
    order = OrderService(db).get_by_id(order_id)
    if order is None:
        return _not_found(request, "Заказ не найден")
    return templates.TemplateResponse(
        request,
        "chat.html",
        {"order": order, "messages": SupportService(db).get_chat_history(order_id)},
    )


@router.post("/chat/{order_id}/send")
async def chat_send(request: Request, order_id: int, text: str = Form(...), db: Session = Depends(get_db)):
    redirect = await require_login(request)
    if redirect:
        return redirect
    try:
        SupportService(db).post_admin_message(order_id, text)
    except NotFound:
        return _not_found(request, "Заказ не найден")
    except ValueError:
        return RedirectResponse(url=f"/admin-ui/chat/{order_id}?error=empty", status_code=303)
    return RedirectResponse(url=f"/admin-ui/chat/{order_id}", status_code=303)


@router.post("/chat/{order_id}/close")
async def chat_close(request: Request, order_id: int, db: Session = Depends(get_db)):
    redirect = await require_login(request)
    if redirect:
        return redirect
    try:
        SupportService(db).close_thread(order_id)
    except NotFound:
        return _not_found(request, "Заказ не найден")
    return RedirectResponse(url="/admin-ui/support", status_code=303)


@router.websocket("/chat/{order_id}/ws")
async def chat_ws(websocket: WebSocket, order_id: int) -> None:
    """Relays support-chat:{order_id} to the open admin chat page."""
    if not await current_admin(websocket):
        await websocket.close(code=1008)
        return
    await websocket.accept()

    async def relay() -> None:
        async for event in chat_bus.listen(order_id):
            await websocket.send_text(event)

    task = asyncio.create_task(relay())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except RedisError as e:
            logger.warning("chat_ws_relay_failed", extra={"order_id": order_id, "error": str(e)})
