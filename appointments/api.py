import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Literal

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from appointments import config
from appointments.availability import get_availability
from appointments.database import Database, get_db
from appointments.errors import (
    BookingEngineError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    ThrottledError,
    ValidationError,
)
from appointments.models import Notification, Order, ScheduleDate
from appointments.notifications import NotificationDispatcher
from appointments.notifier import SmsClient
from appointments.reconciler import BookingReconciler, ReconciliationResult
from appointments.worker import NotificationQueue

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_CODES: dict[type[BookingEngineError], int] = {
    NotFoundError: 404,
    ThrottledError: 429,
    ValidationError: 400,
    ProviderError: 502,
    PersistenceError: 500,
}


class SendMessageRequest(BaseModel):
    order_id: int
    line_item_id: int
    message: str
    to: Literal["customer", "staff"]


def _reconciler(request: Request) -> BookingReconciler:
    return request.app.state.reconciler


def _dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/webhooks/orders/create")
async def order_created(
    order: Order, request: Request, x_shopify_shop_domain: str = Header()
) -> ReconciliationResult:
    return await _reconciler(request).create(order, x_shopify_shop_domain)


@router.post("/webhooks/orders/updated")
async def order_updated(
    order: Order, request: Request, x_shopify_shop_domain: str = Header()
) -> ReconciliationResult:
    return await _reconciler(request).update(order, x_shopify_shop_domain)


@router.post("/webhooks/orders/cancelled")
async def order_cancelled(
    order: Order, request: Request, x_shopify_shop_domain: str = Header()
) -> ReconciliationResult:
    return await _reconciler(request).cancel(order, x_shopify_shop_domain)


@router.get("/availability")
async def availability(
    request: Request,
    shop: str,
    product_id: int,
    start: date,
    end: date,
    staff: str | None = None,
) -> list[ScheduleDate]:
    return await get_availability(request.app.state.db, shop, product_id, start, end, staff)


@router.get("/notifications")
async def list_notifications(
    request: Request, shop: str, order_id: int, line_item_id: int
) -> list[Notification]:
    return await _dispatcher(request).get(shop, order_id, line_item_id)


@router.post("/notifications")
async def send_message(
    body: SendMessageRequest, request: Request, shop: str
) -> Notification:
    return await _dispatcher(request).send_custom(
        shop=shop,
        order_id=body.order_id,
        line_item_id=body.line_item_id,
        message=body.message,
        to=body.to,
    )


@router.post("/notifications/{notification_id}/resend")
async def resend_message(notification_id: str, request: Request, shop: str) -> Notification:
    return await _dispatcher(request).resend(shop, notification_id)


@router.delete("/notifications/{notification_id}")
async def cancel_message(notification_id: str, request: Request, shop: str) -> Notification:
    return await _dispatcher(request).cancel(shop, notification_id)


async def _engine_error(request: Request, exc: BookingEngineError) -> JSONResponse:
    status_code = next(
        (code for error, code in _STATUS_CODES.items() if isinstance(exc, error)), 500
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(db: Database | None = None, sms_client: SmsClient | None = None) -> FastAPI:
    logging.basicConfig(level=config.LOG_LEVEL)

    if db is None:
        db = get_db()
    if sms_client is None:
        sms_client = SmsClient()
    queue = NotificationQueue()
    dispatcher = NotificationDispatcher(db, sms_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        yield
        await queue.stop()
        await sms_client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.db = db
    app.state.queue = queue
    app.state.dispatcher = dispatcher
    app.state.reconciler = BookingReconciler(db, queue, dispatcher)
    app.add_exception_handler(BookingEngineError, _engine_error)
    app.include_router(router)
    return app
