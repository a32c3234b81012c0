"""
Booking reconciler: keeps the booking ledger in line with commerce order
events.

Each booking is identified by (shop, order_id, line_item_id, product_id).
Order events never delete a booking; cancellation and refunds are status
changes, and a booking in a terminal status keeps it. Bookings edited by
hand (`is_edit`) are left alone by upserts.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic
from pydantic import BaseModel

from appointments.database import Database
from appointments.errors import PersistenceError, ValidationError
from appointments.models import (
    TERMINAL_FULFILLMENT_STATUSES,
    Booking,
    BookingData,
    Customer,
    FulfillmentStatus,
    LineItem,
    Order,
)
from appointments.notifications import NotificationDispatcher
from appointments.worker import NotificationQueue

logger = logging.getLogger(__name__)

DATA_PROPERTY = "_data"


@dataclass
class BookingCandidate:
    booking: Booking


@dataclass
class SkippedLineItem:
    line_item_id: int
    reason: str


class ReconciliationResult(BaseModel):
    upserted: int = 0
    modified: int = 0
    cancelled: int = 0
    skipped: list[int] = []


def _localize(value: datetime, time_zone: str | None, line_item_id: int) -> datetime:
    """Read a wall-clock time without offset in the booking's own time zone."""
    if value.tzinfo is not None:
        return value
    if not time_zone:
        raise ValidationError(f"line item {line_item_id} has time {value} without offset or time zone")
    try:
        return value.replace(tzinfo=ZoneInfo(time_zone))
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"line item {line_item_id} has unknown time zone {time_zone!r}") from exc


def _booking_data(line_item: LineItem) -> BookingData | None:
    raw = next((p.value for p in line_item.properties if p.name == DATA_PROPERTY), None)
    if raw is None:
        return None
    try:
        data = BookingData.model_validate(json.loads(raw))
    except (json.JSONDecodeError, pydantic.ValidationError) as exc:
        raise ValidationError(f"line item {line_item.id} has malformed {DATA_PROPERTY}: {exc}") from exc
    data.start = _localize(data.start, data.time_zone, line_item.id)
    data.end = _localize(data.end, data.time_zone, line_item.id)
    if data.end <= data.start:
        raise ValidationError(
            f"line item {line_item.id} ends at {data.end} before it starts at {data.start}"
        )
    return data


def _is_refunded(order: Order, line_item: LineItem) -> bool:
    return any(
        refund_line.line_item_id == line_item.id
        for refund in order.refunds
        for refund_line in refund.refund_line_items
    )


def _fulfillment_status(order: Order, line_item: LineItem) -> FulfillmentStatus:
    if _is_refunded(order, line_item):
        return FulfillmentStatus.REFUNDED
    if line_item.fulfillment_status == FulfillmentStatus.FULFILLED:
        return FulfillmentStatus.FULFILLED
    return FulfillmentStatus.PENDING


def decode_line_item(
    order: Order, line_item: LineItem, shop: str, line_item_total: int
) -> BookingCandidate | SkippedLineItem:
    """Turn one line item into a booking candidate, or say why it is skipped."""
    try:
        data = _booking_data(line_item)
    except ValidationError as exc:
        return SkippedLineItem(line_item_id=line_item.id, reason=str(exc))
    if data is None:
        return SkippedLineItem(line_item_id=line_item.id, reason=f"no {DATA_PROPERTY} property")
    if line_item.product_id is None:
        return SkippedLineItem(line_item_id=line_item.id, reason="no product id")

    return BookingCandidate(
        booking=Booking(
            shop=shop,
            order_id=order.id,
            line_item_id=line_item.id,
            line_item_total=line_item_total,
            product_id=line_item.product_id,
            staff=data.staff.id,
            start=data.start,
            end=data.end,
            customer_id=order.customer.id,
            title=line_item.title,
            time_zone=data.time_zone,
            any_available=bool(data.staff.any_available),
            fulfillment_status=_fulfillment_status(order, line_item),
        )
    )


def _carries_booking(line_item: LineItem) -> bool:
    return any(p.name == DATA_PROPERTY for p in line_item.properties)


class BookingReconciler:
    def __init__(
        self, db: Database, queue: NotificationQueue, dispatcher: NotificationDispatcher
    ) -> None:
        self._db = db
        self._queue = queue
        self._dispatcher = dispatcher

    async def create(self, order: Order, shop: str) -> ReconciliationResult:
        return await self.modify(order, shop, send_booking=True)

    async def update(self, order: Order, shop: str) -> ReconciliationResult:
        return await self.modify(order, shop)

    async def cancel(self, order: Order, shop: str) -> ReconciliationResult:
        """Cancel every booking of the order, whatever its line items say."""
        cancelled = await self._db.bookings.update_many(
            {"shop": shop, "order_id": order.id},
            {"fulfillment_status": FulfillmentStatus.CANCELLED},
        )
        logger.info("Order %s of %s cancelled: %d bookings", order.id, shop, cancelled)
        return ReconciliationResult(cancelled=cancelled)

    async def resolve_customer(self, order: Order, shop: str) -> Customer:
        """Create or update the order's customer by its commerce customer id."""
        source = order.customer
        existing = await self._db.customers.find_one({"shop": shop, "customer_id": source.id})
        fullname = " ".join(part for part in (source.first_name, source.last_name) if part)
        customer = Customer(
            shop=shop,
            customer_id=source.id,
            customer_graphql_api_id=source.admin_graphql_api_id,
            fullname=fullname or (existing.fullname if existing else ""),
            email=source.email or (existing.email if existing else None),
            phone=source.phone or (existing.phone if existing else None),
        )
        stored, _ = await self._db.customers.upsert(
            {"shop": shop, "customer_id": source.id}, customer
        )
        return stored

    async def modify(
        self, order: Order, shop: str, send_booking: bool = False
    ) -> ReconciliationResult:
        line_items = [item for item in order.line_items if _carries_booking(item)]
        bookings: list[Booking] = []
        skipped: list[int] = []
        for line_item in line_items:
            decoded = decode_line_item(order, line_item, shop, len(line_items))
            if isinstance(decoded, SkippedLineItem):
                logger.warning(
                    "Order %s line item %s skipped: %s", order.id, decoded.line_item_id, decoded.reason
                )
                skipped.append(decoded.line_item_id)
            else:
                bookings.append(decoded.booking)

        customer = await self.resolve_customer(order, shop)

        if send_booking and bookings:
            self._enqueue_notifications(shop, customer, bookings)

        # an order left without booking line items cancels the bookings it had
        if all(b.fulfillment_status == FulfillmentStatus.REFUNDED for b in bookings):
            result = await self.cancel(order, shop)
            result.skipped = skipped
            return result

        outcomes = await asyncio.gather(
            *(self._upsert(booking) for booking in bookings), return_exceptions=True
        )
        failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if failures:
            logger.error("Order %s: %d of %d upserts failed", order.id, len(failures), len(bookings))
            raise PersistenceError(
                f"{len(failures)} of {len(bookings)} bookings of order {order.id} "
                f"could not be stored: {failures[0]}"
            ) from failures[0]

        inserted = sum(1 for created in outcomes if created)
        return ReconciliationResult(
            upserted=inserted, modified=len(bookings) - inserted, skipped=skipped
        )

    async def _upsert(self, booking: Booking) -> bool:
        key = {
            "shop": booking.shop,
            "order_id": booking.order_id,
            "line_item_id": booking.line_item_id,
            "product_id": booking.product_id,
            "is_edit": False,
        }
        existing = await self._db.bookings.find_one(key)
        if existing is not None and existing.fulfillment_status in TERMINAL_FULFILLMENT_STATUSES:
            booking = booking.model_copy(update={"fulfillment_status": existing.fulfillment_status})
        _, created = await self._db.bookings.upsert(key, booking)
        return created

    def _enqueue_notifications(self, shop: str, customer: Customer, bookings: list[Booking]) -> None:
        dispatcher = self._dispatcher
        order_id = bookings[0].order_id
        self._queue.enqueue(
            f"confirmation:{order_id}",
            lambda: dispatcher.send_booking_confirmation_customer(shop, customer, bookings),
        )
        for booking in bookings:
            self._queue.enqueue(
                f"reminder-customer:{order_id}:{booking.line_item_id}",
                lambda booking=booking: dispatcher.send_reminder_customer(shop, customer, booking),
            )
            self._queue.enqueue(
                f"reminder-staff:{order_id}:{booking.line_item_id}",
                lambda booking=booking: dispatcher.send_reminder_staff(shop, booking),
            )
