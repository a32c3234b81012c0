"""
Notification dispatcher: sends and schedules SMS for bookings and keeps a
notification record per attempt.

A conversation is (shop, order_id, line_item_id, receiver). No two messages
of one conversation may be sent within the cooldown window; every path that
sends goes through the same gate.

The gate counts recent records and then inserts the new `queued` record.
Store calls never suspend in the in-memory store, so there is no await point
between the count and the insert and concurrent sends of one conversation
cannot both pass. A networked store would need an atomic conditional insert
keyed by conversation and time bucket to keep that property; until then the
gate is best-effort there.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

from appointments import config
from appointments.database import Database
from appointments.errors import NotFoundError, ProviderError, ThrottledError, ValidationError
from appointments.models import Booking, Customer, Notification, NotificationStatus, utcnow
from appointments.notifier import SmsClient, normalize_phone
from appointments.templates import render

logger = logging.getLogger(__name__)

ORDER_LEVEL = -1  # line_item_id of messages about the whole order


class NotificationDispatcher:
    def __init__(
        self,
        db: Database,
        provider: SmsClient,
        cooldown_minutes: int = config.NOTIFICATION_COOLDOWN_MINUTES,
        time_zone: str = config.DISPLAY_TIME_ZONE,
        language: str = config.MESSAGE_LANGUAGE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._provider = provider
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._zone = ZoneInfo(time_zone)
        self._language = language
        self._clock = clock

    async def can_send(self, shop: str, order_id: int, line_item_id: int, receiver: str) -> bool:
        """True when nothing was sent to this conversation inside the cooldown window."""
        recent = await self._db.notifications.count(
            {
                "shop": shop,
                "order_id": order_id,
                "line_item_id": line_item_id,
                "receiver": normalize_phone(receiver),
                "updated_at": {"$gte": self._clock() - self._cooldown},
            }
        )
        return recent == 0

    async def get(self, shop: str, order_id: int, line_item_id: int) -> list[Notification]:
        """Messages of a line item, together with the order-level ones, oldest first."""
        return await self._db.notifications.find(
            {
                "shop": shop,
                "order_id": order_id,
                "line_item_id": {"$in": [line_item_id, ORDER_LEVEL]},
            },
            sort="created_at",
        )

    async def _record(
        self,
        shop: str,
        order_id: int,
        line_item_id: int,
        receiver: str,
        message: str,
        scheduled: datetime | None,
        is_staff: bool,
    ) -> Notification:
        now = self._clock()
        return await self._db.notifications.create(
            Notification(
                shop=shop,
                order_id=order_id,
                line_item_id=line_item_id,
                receiver=receiver,
                message=message,
                scheduled=scheduled,
                is_staff=is_staff,
                created_at=now,
                updated_at=now,
            )
        )

    async def _deliver(self, notification: Notification) -> Notification:
        try:
            result = await self._provider.send(
                notification.receiver, notification.message, notification.scheduled
            )
        except ProviderError:
            await self._db.notifications.find_by_id_and_update(
                notification.id, {"status": NotificationStatus.FAILED}
            )
            raise

        return await self._db.notifications.find_by_id_and_update(
            notification.id, {"status": result.status, "batch_id": result.batch_id}
        )

    async def send(
        self,
        shop: str,
        order_id: int,
        receiver: str | None,
        message: str,
        line_item_id: int = ORDER_LEVEL,
        scheduled: datetime | None = None,
        is_staff: bool = False,
    ) -> Notification:
        """
        Send (or schedule) one message and return its notification record.

        Raises ThrottledError inside the cooldown window and ProviderError when
        the provider fails; the record is then left with status `failed`.
        """
        phone = normalize_phone(receiver)
        if phone is None:
            raise ValidationError("receiver phone number is missing")

        if not await self.can_send(shop, order_id, line_item_id, phone):
            logger.info(
                "Throttled message to %s for order %s line item %s", phone, order_id, line_item_id
            )
            raise ThrottledError()

        notification = await self._record(
            shop, order_id, line_item_id, phone, message, scheduled, is_staff
        )
        return await self._deliver(notification)

    async def send_custom(
        self,
        shop: str,
        order_id: int,
        line_item_id: int,
        message: str,
        to: Literal["customer", "staff"],
    ) -> Notification:
        """Send a free-text message to the customer or the staff of a booking."""
        booking = await self._db.bookings.find_one(
            {"shop": shop, "order_id": order_id, "line_item_id": line_item_id}
        )
        if booking is None:
            raise NotFoundError(f"booking for order {order_id} line item {line_item_id} not found")

        if to == "customer":
            receiver = await self._db.customers.find_one(
                {"shop": shop, "customer_id": booking.customer_id}
            )
        elif to == "staff":
            receiver = await self._db.staff.find_by_id(booking.staff)
        else:
            raise ValidationError(f"unknown receiver {to!r}, expected 'customer' or 'staff'")

        if receiver is None or not receiver.phone:
            raise NotFoundError(f"{to} phone number not found")

        return await self.send(
            shop=shop,
            order_id=order_id,
            line_item_id=line_item_id,
            receiver=receiver.phone,
            message=message,
            is_staff=to == "staff",
        )

    async def resend(self, shop: str, id: str) -> Notification:
        """Send an earlier message again, as a new notification record."""
        original = await self._db.notifications.find_one({"id": id, "shop": shop})
        if original is None:
            raise NotFoundError(f"notification {id} not found")

        if not await self.can_send(
            shop, original.order_id, original.line_item_id, original.receiver
        ):
            raise ThrottledError()

        now = self._clock()
        await self._db.notifications.find_by_id_and_update(original.id, {"updated_at": now})

        scheduled = original.scheduled if original.scheduled and original.scheduled > now else None
        notification = await self._record(
            shop,
            original.order_id,
            original.line_item_id,
            original.receiver,
            original.message,
            scheduled,
            original.is_staff,
        )
        return await self._deliver(notification)

    async def cancel(self, shop: str, id: str) -> Notification:
        """
        Mark a notification cancelled and delete its scheduled message at the
        provider. Cancelling twice does not call the provider again; when the
        provider fails the previous status is restored so the cancel can be
        retried.
        """
        existing = await self._db.notifications.find_one({"id": id, "shop": shop})
        if existing is None:
            raise NotFoundError(f"notification {id} not found")

        notification = await self._db.notifications.find_one_and_update(
            {"id": id, "shop": shop, "status": {"$ne": NotificationStatus.CANCELLED}},
            {"status": NotificationStatus.CANCELLED},
        )
        if notification is None:
            return existing

        if notification.batch_id:
            try:
                await self._provider.delete(notification.batch_id)
            except ProviderError:
                await self._db.notifications.find_by_id_and_update(
                    notification.id, {"status": existing.status}
                )
                raise
        return notification

    def _local_start(self, booking: Booking) -> datetime:
        return booking.start.astimezone(self._zone)

    async def send_booking_confirmation_customer(
        self, shop: str, customer: Customer, bookings: list[Booking]
    ) -> Notification | None:
        if not customer.phone or not bookings:
            logger.info("No confirmation for customer %s: no phone or bookings", customer.customer_id)
            return None

        message = render(
            "confirmation_customer",
            self._language,
            fullname=customer.fullname,
            count=len(bookings),
        )
        return await self.send(
            shop=shop,
            order_id=bookings[0].order_id,
            receiver=customer.phone,
            message=message,
        )

    async def _send_reminder(
        self, shop: str, booking: Booking, receiver: str, fullname: str, template: str, is_staff: bool
    ) -> Notification | None:
        local_start = self._local_start(booking)
        scheduled = local_start - timedelta(days=1)
        if scheduled <= self._clock():
            logger.info(
                "Reminder for order %s line item %s skipped: %s already passed",
                booking.order_id,
                booking.line_item_id,
                scheduled,
            )
            return None

        message = render(
            template,
            self._language,
            fullname=fullname,
            title=booking.title or "",
            time=local_start.strftime("%H:%M"),
        )
        return await self.send(
            shop=shop,
            order_id=booking.order_id,
            line_item_id=booking.line_item_id,
            receiver=receiver,
            message=message,
            scheduled=scheduled,
            is_staff=is_staff,
        )

    async def send_reminder_customer(
        self, shop: str, customer: Customer, booking: Booking
    ) -> Notification | None:
        """Schedule the customer's reminder one day before the booking."""
        if not customer.phone:
            return None
        return await self._send_reminder(
            shop, booking, customer.phone, customer.fullname, "reminder_customer", is_staff=False
        )

    async def send_reminder_staff(self, shop: str, booking: Booking) -> Notification | None:
        """Schedule the staff's reminder one day before the booking."""
        staff = await self._db.staff.find_by_id(booking.staff)
        if staff is None or not staff.phone:
            logger.info("No reminder for staff %s: unknown staff or no phone", booking.staff)
            return None
        return await self._send_reminder(
            shop, booking, staff.phone, staff.fullname, "reminder_staff", is_staff=True
        )
