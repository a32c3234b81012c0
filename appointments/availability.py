import logging
from datetime import date

from appointments.database import Database
from appointments.errors import NotFoundError, ValidationError
from appointments.models import ScheduleDate
from appointments.slots import generate_slots, remove_booked

logger = logging.getLogger(__name__)


async def get_availability(
    db: Database,
    shop: str,
    product_id: int,
    start: date | str,
    end: date | str,
    staff: str | None = None,
) -> list[ScheduleDate]:
    """
    Bookable slots of a product between two dates (inclusive), optionally for
    one staff member, minus existing bookings and cart holds.
    """
    try:
        if date.fromisoformat(str(start)) > date.fromisoformat(str(end)):
            raise ValidationError(f"start {start} is after end {end}")
    except ValueError as exc:
        raise ValidationError(f"Invalid date range {start}..{end}") from exc

    product = await db.products.find_one({"shop": shop, "product_id": product_id})
    if product is None:
        raise NotFoundError(f"product {product_id} not found")

    if staff is not None:
        tags = [s.tag for s in product.staff if s.staff == staff]
        if not tags:
            raise NotFoundError(f"staff {staff} not found on product {product_id}")
        windows = await db.get_by_staff_and_tag(tag=tags[0], staff=staff, start=start, end=end)
    else:
        tags = sorted({s.tag for s in product.staff})
        windows = await db.get_by_tag(tag=tags, start=start, end=end)

    slots = generate_slots(windows, product.duration, product.buffertime)

    staff_ids = sorted({window.staff.id for window in windows})
    bookings = await db.find_bookings_in_range(shop, staff_ids, start, end)
    carts = await db.find_carts_in_range(shop, staff_ids, start, end)
    logger.debug(
        "Product %s: %d windows, %d bookings, %d cart holds",
        product_id,
        len(windows),
        len(bookings),
        len(carts),
    )

    slots = remove_booked(slots, bookings)
    return remove_booked(slots, carts)
