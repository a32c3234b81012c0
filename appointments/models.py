"""
Domain records, read models and the commerce order payload.
"""

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class Staff(BaseModel):
    id: str = Field(default_factory=new_id)
    shop: str
    fullname: str
    email: str | None = None
    phone: str | None = None
    active: bool = True


class Schedule(BaseModel):
    """A single availability window of one staff member."""

    id: str = Field(default_factory=new_id)
    staff: str
    group_id: str | None = None
    start: datetime
    end: datetime
    available: bool = True  # False marks explicit unavailability
    tag: str


class ProductStaff(BaseModel):
    staff: str
    tag: str


class Product(BaseModel):
    id: str = Field(default_factory=new_id)
    shop: str
    product_id: int  # commerce platform product id
    title: str = ""
    collection_id: str | None = None
    duration: int | None = None  # minutes
    buffertime: int | None = None  # minutes
    staff: list[ProductStaff] = []


class FulfillmentStatus(StrEnum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


TERMINAL_FULFILLMENT_STATUSES = {FulfillmentStatus.REFUNDED, FulfillmentStatus.CANCELLED}


class Booking(BaseModel):
    id: str = Field(default_factory=new_id)
    shop: str
    order_id: int
    line_item_id: int
    line_item_total: int = 1
    product_id: int
    staff: str
    start: datetime
    end: datetime
    customer_id: int
    title: str | None = None
    time_zone: str | None = None
    any_available: bool = False  # True when the staff was assigned for the customer
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.PENDING
    is_edit: bool = False  # manual override, never touched by order events


class Customer(BaseModel):
    id: str = Field(default_factory=new_id)
    shop: str
    customer_id: int
    customer_graphql_api_id: str | None = None
    fullname: str = ""
    email: str | None = None
    phone: str | None = None


class NotificationStatus(StrEnum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    shop: str
    order_id: int
    line_item_id: int = -1  # -1 for order-level messages
    receiver: str  # phone number without leading "+"
    message: str
    # Provider-reported statuses are stored as given, so this stays a plain str.
    status: str = NotificationStatus.QUEUED
    batch_id: str | None = None
    scheduled: datetime | None = None
    is_staff: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CartHold(BaseModel):
    """A reservation of a staff time window not yet backed by an order."""

    id: str = Field(default_factory=new_id)
    shop: str
    staff: str
    start: datetime
    end: datetime
    created_at: datetime = Field(default_factory=utcnow)


# Read models


class StaffSummary(BaseModel):
    id: str
    fullname: str


class ScheduleWindow(BaseModel):
    """A schedule joined with the staff it belongs to."""

    id: str
    staff: StaffSummary
    group_id: str | None = None
    start: datetime
    end: datetime
    tag: str


class ScheduleHour(BaseModel):
    start: datetime
    end: datetime
    staff: StaffSummary


class ScheduleDate(BaseModel):
    date: str  # YYYY-MM-DD
    hours: list[ScheduleHour] = []


# Commerce order payload


class OrderCustomer(BaseModel):
    id: int
    admin_graphql_api_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None


class LineItemProperty(BaseModel):
    name: str
    value: str | None = None


class LineItem(BaseModel):
    id: int
    product_id: int | None = None
    title: str = ""
    fulfillment_status: str | None = None
    properties: list[LineItemProperty] = []


class RefundLineItem(BaseModel):
    line_item_id: int


class Refund(BaseModel):
    refund_line_items: list[RefundLineItem] = []


class Order(BaseModel):
    id: int
    customer: OrderCustomer
    line_items: list[LineItem] = []
    refunds: list[Refund] = []


class BookingDataStaff(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    any_available: bool | None = Field(default=False, alias="anyAvailable")


class BookingData(BaseModel):
    """The serialized `_data` property a storefront attaches to a line item."""

    model_config = ConfigDict(populate_by_name=True)

    staff: BookingDataStaff
    start: datetime
    end: datetime
    time_zone: str | None = Field(default=None, alias="timeZone")
