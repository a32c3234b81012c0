"""
Builders for test records. Every helper takes the shop explicitly.
"""

import json
from datetime import datetime

from appointments.database import Database
from appointments.models import (
    Booking,
    CartHold,
    Customer,
    FulfillmentStatus,
    Order,
    Product,
    ProductStaff,
    Schedule,
    ScheduleWindow,
    Staff,
    StaffSummary,
)

ANNA = "27e8d156-7fee-4f79-94d7-b45d306724d4"
BO = "b7e6a0f4-4c32-44dd-8a6d-ec6b7e9477da"
CARL = "c3d4e5f6-a7b8-9012-cdef-345678901234"
FACIAL = 8001
MASSAGE = 8002


def at(value: str) -> datetime:
    return datetime.fromisoformat(value)


def window(start: str, end: str, staff: str = ANNA, fullname: str = "Anna Jensen") -> ScheduleWindow:
    return ScheduleWindow(
        id=f"{staff}-{start}",
        staff=StaffSummary(id=staff, fullname=fullname),
        start=at(start),
        end=at(end),
        tag="treatments",
    )


async def create_staff(db: Database, shop: str, fullname: str, phone: str | None = "+4531317499") -> Staff:
    return await db.staff.create(Staff(shop=shop, fullname=fullname, phone=phone))


async def create_product(
    db: Database,
    shop: str,
    product_id: int,
    staff: list[tuple[str, str]],
    duration: int | None = 45,
    buffertime: int | None = 15,
) -> Product:
    return await db.products.create(
        Product(
            shop=shop,
            product_id=product_id,
            title="Test treatment",
            duration=duration,
            buffertime=buffertime,
            staff=[ProductStaff(staff=s, tag=tag) for s, tag in staff],
        )
    )


async def create_schedule(
    db: Database, staff: str, tag: str, start: str, end: str, available: bool = True
) -> Schedule:
    return await db.schedules.create(
        Schedule(staff=staff, tag=tag, start=at(start), end=at(end), available=available)
    )


async def create_booking(
    db: Database,
    shop: str,
    order_id: int,
    line_item_id: int,
    start: str,
    end: str,
    staff: str = ANNA,
    product_id: int = FACIAL,
    customer_id: int = 7001,
    status: FulfillmentStatus = FulfillmentStatus.PENDING,
    is_edit: bool = False,
) -> Booking:
    return await db.bookings.create(
        Booking(
            shop=shop,
            order_id=order_id,
            line_item_id=line_item_id,
            product_id=product_id,
            staff=staff,
            start=at(start),
            end=at(end),
            customer_id=customer_id,
            title="Facial",
            fulfillment_status=status,
            is_edit=is_edit,
        )
    )


async def create_customer(
    db: Database, shop: str, customer_id: int = 7001, phone: str | None = "+4520202020"
) -> Customer:
    return await db.customers.create(
        Customer(shop=shop, customer_id=customer_id, fullname="Karen Hansen", phone=phone)
    )


async def create_cart(db: Database, shop: str, staff: str, start: str, end: str) -> CartHold:
    return await db.carts.create(CartHold(shop=shop, staff=staff, start=at(start), end=at(end)))


def booking_data(
    start: str, end: str, staff: str = ANNA, any_available: bool = False, time_zone: str = "Europe/Copenhagen"
) -> str:
    return json.dumps(
        {
            "staff": {"_id": staff, "anyAvailable": any_available},
            "start": start,
            "end": end,
            "timeZone": time_zone,
        }
    )


def line_item(
    id: int,
    product_id: int | None = FACIAL,
    data: str | None = None,
    fulfillment_status: str | None = None,
    title: str = "Facial",
) -> dict:
    properties = [{"name": "_data", "value": data}] if data is not None else []
    return {
        "id": id,
        "product_id": product_id,
        "title": title,
        "fulfillment_status": fulfillment_status,
        "properties": properties,
    }


def order_payload(
    id: int = 5001,
    line_items: list[dict] | None = None,
    refunded_line_items: list[int] | None = None,
    customer_id: int = 7001,
    phone: str | None = "+4520202020",
) -> dict:
    return {
        "id": id,
        "customer": {
            "id": customer_id,
            "admin_graphql_api_id": f"gid://shopify/Customer/{customer_id}",
            "first_name": "Karen",
            "last_name": "Hansen",
            "email": "karen@example.com",
            "phone": phone,
        },
        "line_items": line_items or [],
        "refunds": [
            {"refund_line_items": [{"line_item_id": i} for i in refunded_line_items]}
        ]
        if refunded_line_items
        else [],
    }


def order(**kwargs) -> Order:
    return Order.model_validate(order_payload(**kwargs))
