"""
Turn staff availability windows into bookable slots, and take slots away
again for bookings and cart holds.

Slots are packed back to back from the start of each window; this is not a
first-fit scheduler. A slot is only emitted while at least one minute of the
window is left after it, so no slot ever ends past its window.

A booking or hold evicts a slot of the same staff when the slot contains
(inclusive on both ends) the minute after the booking starts or the minute
before it ends. A booking ending exactly on a slot boundary therefore leaves
the neighbouring slot alone.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Protocol

from appointments import config
from appointments.models import ScheduleDate, ScheduleHour, ScheduleWindow

logger = logging.getLogger(__name__)

ONE_MINUTE = timedelta(minutes=1)


class Hold(Protocol):
    """Anything that consumes a staff time window: a booking or a cart hold."""

    start: datetime
    end: datetime
    staff: str


def slot_length(duration: int | None, buffertime: int | None) -> timedelta:
    if not duration:
        duration = config.DEFAULT_DURATION_MINUTES
    if not buffertime:
        buffertime = config.DEFAULT_BUFFERTIME_MINUTES
    return timedelta(minutes=duration + buffertime)


def generate_slots(
    windows: Iterable[ScheduleWindow],
    duration: int | None = None,
    buffertime: int | None = None,
) -> list[ScheduleDate]:
    """
    Cut each window into slots of `duration + buffertime` minutes.

    Slots are grouped by the date of their window's start (a window spanning
    midnight stays under its start date). Windows falling on the same date are
    appended to one bucket in the order they are given.
    """
    step = slot_length(duration, buffertime)
    dates: list[ScheduleDate] = []
    by_date: dict[str, ScheduleDate] = {}

    for window in windows:
        date = window.start.strftime("%Y-%m-%d")
        bucket = by_date.get(date)
        if bucket is None:
            bucket = ScheduleDate(date=date, hours=[])
            by_date[date] = bucket
            dates.append(bucket)

        cursor = window.start
        while cursor + step + ONE_MINUTE <= window.end:
            bucket.hours.append(ScheduleHour(start=cursor, end=cursor + step, staff=window.staff))
            cursor += step

    return dates


def _contains(hour: ScheduleHour, moment: datetime) -> bool:
    return hour.start <= moment <= hour.end


def filter_booked(dates: list[ScheduleDate], hold: Hold) -> list[ScheduleDate]:
    """Drop the slots `hold` makes unavailable. Other staff's slots are untouched."""
    staff = str(hold.staff)
    first_minute = hold.start + ONE_MINUTE
    last_minute = hold.end - ONE_MINUTE

    def keep(hour: ScheduleHour) -> bool:
        if hour.staff.id != staff:
            return True
        if _contains(hour, first_minute) or _contains(hour, last_minute):
            logger.debug(
                "Slot %s-%s of staff %s taken by %s-%s",
                hour.start,
                hour.end,
                staff,
                hold.start,
                hold.end,
            )
            return False
        return True

    return [
        schedule.model_copy(update={"hours": [h for h in schedule.hours if keep(h)]})
        for schedule in dates
    ]


def remove_booked(dates: list[ScheduleDate], holds: Iterable[Hold]) -> list[ScheduleDate]:
    for hold in holds:
        dates = filter_booked(dates, hold)
    return dates
