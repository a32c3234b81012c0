from __future__ import annotations

import json
import operator
from collections.abc import Callable, Iterator, MutableMapping
from datetime import UTC, date, datetime, time
from pathlib import Path
from typing import Any, Generic, TypeVar

import pydantic
from pydantic import BaseModel

from appointments.errors import PersistenceError
from appointments.models import (
    TERMINAL_FULFILLMENT_STATUSES,
    Booking,
    CartHold,
    Customer,
    Notification,
    Product,
    Schedule,
    ScheduleWindow,
    Staff,
    StaffSummary,
)

T = TypeVar("T", bound=BaseModel)

Filter = dict[str, Any]


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, operand: Any) -> bool:
        return value is not None and op(value, operand)

    return check


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$in": lambda value, operand: value in operand,
    "$nin": lambda value, operand: value not in operand,
    "$ne": operator.ne,
    "$gt": _compare(operator.gt),
    "$gte": _compare(operator.ge),
    "$lt": _compare(operator.lt),
    "$lte": _compare(operator.le),
}


def matches(document: BaseModel, filter: Filter) -> bool:
    """Check a document against a filter of field -> value or field -> {op: operand}."""
    for field, expected in filter.items():
        try:
            value = getattr(document, field)
        except AttributeError:
            raise PersistenceError(f"Unknown field {field!r} in filter") from None

        if isinstance(expected, dict):
            for op, operand in expected.items():
                check = _OPERATORS.get(op)
                if check is None:
                    raise PersistenceError(f"Unsupported filter operator {op!r}")
                if not check(value, operand):
                    return False
        elif value != expected:
            return False
    return True


class Collection(Generic[T]):
    """
    In-memory document collection keyed by the document's `id`.

    None of the coroutine methods await anything internally, so each call runs
    to completion before another coroutine can touch the collection. That makes
    every single operation (including upsert and find-and-update) atomic.
    """

    def __init__(self, model: type[T]) -> None:
        self._model = model
        self._store: MutableMapping[str, T] = {}

    def put(self, document: T) -> None:
        self._store[document.id] = document.model_copy(deep=True)

    def get(self, key: str) -> T | None:
        document = self._store.get(key)
        return document.model_copy(deep=True) if document is not None else None

    def all(self) -> list[T]:
        return [document.model_copy(deep=True) for document in self._store.values()]

    def clear(self) -> None:
        self._store.clear()

    def __iter__(self) -> Iterator[T]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._store)

    def _patched(self, document: T, patch: dict[str, Any]) -> T:
        data = document.model_dump()
        data.update(patch)
        data["id"] = document.id
        try:
            return self._model.model_validate(data)
        except pydantic.ValidationError as exc:
            raise PersistenceError(
                f"Invalid update for {self._model.__name__} {document.id}: {exc}"
            ) from exc

    def _first(self, filter: Filter) -> T | None:
        for document in self._store.values():
            if matches(document, filter):
                return document
        return None

    async def create(self, document: T) -> T:
        if document.id in self._store:
            raise PersistenceError(f"{self._model.__name__} {document.id} already exists")
        self.put(document)
        return document.model_copy(deep=True)

    async def insert_many(self, documents: list[T]) -> list[T]:
        duplicates = [d.id for d in documents if d.id in self._store]
        if duplicates:
            raise PersistenceError(f"{self._model.__name__} already exists: {duplicates}")
        for document in documents:
            self.put(document)
        return [document.model_copy(deep=True) for document in documents]

    async def find(self, filter: Filter | None = None, sort: str | None = None) -> list[T]:
        documents = [
            document.model_copy(deep=True)
            for document in self._store.values()
            if matches(document, filter or {})
        ]
        if sort is not None:
            documents.sort(key=lambda d: getattr(d, sort))
        return documents

    async def find_one(self, filter: Filter) -> T | None:
        document = self._first(filter)
        return document.model_copy(deep=True) if document is not None else None

    async def find_by_id(self, id: str) -> T | None:
        return self.get(id)

    async def count(self, filter: Filter | None = None) -> int:
        return sum(1 for document in self._store.values() if matches(document, filter or {}))

    async def find_by_id_and_update(self, id: str, patch: dict[str, Any]) -> T | None:
        """Apply `patch` to the document and return it after the update."""
        document = self._store.get(id)
        if document is None:
            return None
        updated = self._patched(document, patch)
        self._store[id] = updated
        return updated.model_copy(deep=True)

    async def find_one_and_update(self, filter: Filter, patch: dict[str, Any]) -> T | None:
        """Apply `patch` to the first match and return it after the update."""
        document = self._first(filter)
        if document is None:
            return None
        updated = self._patched(document, patch)
        self._store[document.id] = updated
        return updated.model_copy(deep=True)

    async def update_many(self, filter: Filter, patch: dict[str, Any]) -> int:
        targets = [d for d in self._store.values() if matches(d, filter)]
        # validate every patch before writing any
        updated = [self._patched(document, patch) for document in targets]
        for document in updated:
            self._store[document.id] = document
        return len(updated)

    async def upsert(self, filter: Filter, document: T) -> tuple[T, bool]:
        """
        Replace the first document matching `filter` with `document`, keeping
        the stored id, or insert `document` when nothing matches.

        Returns the stored document and whether it was inserted.
        """
        existing = self._first(filter)
        if existing is None:
            self.put(document)
            return document.model_copy(deep=True), True

        replacement = document.model_copy(update={"id": existing.id}, deep=True)
        self._store[existing.id] = replacement
        return replacement.model_copy(deep=True), False

    async def remove(self, id: str) -> bool:
        return self._store.pop(id, None) is not None


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def day_bounds(start: date | str, end: date | str) -> tuple[datetime, datetime]:
    """Turn a date range into [start 00:00:00Z, end 23:59:59Z]."""
    return (
        datetime.combine(_as_date(start), time(0, 0), tzinfo=UTC),
        datetime.combine(_as_date(end), time(23, 59, 59), tzinfo=UTC),
    )


class Database:
    """Container for all collections, plus the availability aggregations."""

    def __init__(self) -> None:
        self.staff: Collection[Staff] = Collection(Staff)
        self.schedules: Collection[Schedule] = Collection(Schedule)
        self.products: Collection[Product] = Collection(Product)
        self.bookings: Collection[Booking] = Collection(Booking)
        self.customers: Collection[Customer] = Collection(Customer)
        self.notifications: Collection[Notification] = Collection(Notification)
        self.carts: Collection[CartHold] = Collection(CartHold)

    def clear(self) -> None:
        for collection in (
            self.staff,
            self.schedules,
            self.products,
            self.bookings,
            self.customers,
            self.notifications,
            self.carts,
        ):
            collection.clear()

    async def _join_active_staff(self, schedules: list[Schedule]) -> list[ScheduleWindow]:
        windows = []
        for schedule in schedules:
            staff = await self.staff.find_by_id(schedule.staff)
            if staff is None or not staff.active:
                continue
            windows.append(
                ScheduleWindow(
                    id=schedule.id,
                    staff=StaffSummary(id=staff.id, fullname=staff.fullname),
                    group_id=schedule.group_id,
                    start=schedule.start,
                    end=schedule.end,
                    tag=schedule.tag,
                )
            )
        return windows

    async def get_by_staff_and_tag(
        self, tag: str, staff: str, start: date | str, end: date | str
    ) -> list[ScheduleWindow]:
        """Available windows of one active staff member for a tag and date range."""
        start_at, end_at = day_bounds(start, end)
        schedules = await self.schedules.find(
            {
                "tag": tag,
                "staff": staff,
                "available": True,
                "start": {"$gte": start_at},
                "end": {"$lt": end_at},
            },
            sort="start",
        )
        return await self._join_active_staff(schedules)

    async def get_by_tag(
        self, tag: list[str], start: date | str, end: date | str
    ) -> list[ScheduleWindow]:
        """Available windows of all active staff for any of the tags."""
        start_at, end_at = day_bounds(start, end)
        schedules = await self.schedules.find(
            {
                "tag": {"$in": tag},
                "available": True,
                "start": {"$gte": start_at},
                "end": {"$lt": end_at},
            },
            sort="start",
        )
        return await self._join_active_staff(schedules)

    async def find_bookings_in_range(
        self, shop: str, staff: list[str], start: date | str, end: date | str
    ) -> list[Booking]:
        """Bookings that still consume staff time somewhere inside the date range."""
        start_at, end_at = day_bounds(start, end)
        return await self.bookings.find(
            {
                "shop": shop,
                "staff": {"$in": staff},
                "fulfillment_status": {"$nin": TERMINAL_FULFILLMENT_STATUSES},
                "start": {"$lt": end_at},
                "end": {"$gt": start_at},
            }
        )

    async def find_carts_in_range(
        self, shop: str, staff: list[str], start: date | str, end: date | str
    ) -> list[CartHold]:
        start_at, end_at = day_bounds(start, end)
        return await self.carts.find(
            {
                "shop": shop,
                "staff": {"$in": staff},
                "start": {"$lt": end_at},
                "end": {"$gt": start_at},
            }
        )


_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


def load_sample_data(db: Database | None = None) -> None:
    """Load sample data from sample_data.json into the database."""
    if db is None:
        db = get_db()

    sample_data_path = Path(__file__).parent.parent / "sample_data.json"
    with open(sample_data_path) as f:
        data = json.load(f)

    for staff_data in data["staff"]:
        db.staff.put(Staff(**staff_data))

    for product_data in data["products"]:
        db.products.put(Product(**product_data))

    for schedule_data in data["schedules"]:
        db.schedules.put(Schedule(**schedule_data))
