"""Free time slot generation from weekly availability rules.

Slots are fixed-length windows laid on a per-day grid that starts at the
rule's opening time. A slot is free when no non-cancelled reservation
overlaps it. Booked reservations are not interleaved here; callers that need
a unified calendar join them in with :func:`merge_calendar_slots`.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Protocol, Sequence

from pydantic import BaseModel

from booking.core import config
from booking.core.errors import ValidationError
from booking.scheduling.clock import to_local_naive
from booking.scheduling.overlap import ReservationInterval, overlaps

END_OF_DAY = time(23, 59, 59, 999000)


class AvailabilityRule(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool


class SlotReservation(BaseModel):
    id: str
    title: str | None = None
    status: str


class TimeSlot(BaseModel):
    start: datetime
    end: datetime
    reservation: SlotReservation | None = None


def slot_duration() -> timedelta:
    return timedelta(minutes=config.SLOT_DURATION_MINUTES)


def day_of_week(day: date) -> int:
    """Weekday number with Sunday as 0."""
    return (day.weekday() + 1) % 7


def iterate_days(range_start: datetime, range_end: datetime) -> Iterator[date]:
    current_day = range_start.date()
    while current_day <= range_end.date():
        yield current_day
        current_day += timedelta(days=1)


def parse_timestamp(value: str | None, field: str = 'date') -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(
            'Invalid date format',
            {field: 'Dates must be in a valid format (YYYY-MM-DD)'},
        ) from exc
    return to_local_naive(parsed)


def resolve_query_range(
    date_value: str | None,
    start_value: str | None,
    end_value: str | None,
) -> tuple[datetime, datetime]:
    """Turn ``date`` or ``startDate``/``endDate`` query values into bounds.

    A single ``date`` covers that whole day, ``00:00`` to ``23:59:59.999``.
    """
    if not date_value and (not start_value or not end_value):
        raise ValidationError(
            'Date parameters required',
            {'date': 'Either date or startDate and endDate must be provided'},
        )

    if date_value:
        day = parse_timestamp(date_value).date()
        range_start = datetime.combine(day, time.min)
        range_end = datetime.combine(day, END_OF_DAY)
    else:
        range_start = parse_timestamp(start_value)
        range_end = parse_timestamp(end_value)

    if range_start > range_end:
        raise ValidationError(
            'Invalid date range',
            {'date': 'Start date must be before or equal to end date'},
        )

    return range_start, range_end


def find_rule(rules: Iterable[AvailabilityRule], weekday: int) -> AvailabilityRule | None:
    for rule in rules:
        if rule.day_of_week == weekday and rule.is_available:
            return rule
    return None


def iterate_slot_windows(day_open: datetime, day_close: datetime) -> Iterator[tuple[datetime, datetime]]:
    step = slot_duration()
    slot_start = day_open
    while slot_start < day_close:
        yield slot_start, slot_start + step
        slot_start += step


def is_slot_free(slot_start: datetime, slot_end: datetime, reservations: Sequence[ReservationInterval]) -> bool:
    return not any(
        overlaps(slot_start, slot_end, reservation.start_time, reservation.end_time)
        for reservation in reservations
        if not reservation.is_cancelled
    )


def generate_slots(
    range_start: datetime,
    range_end: datetime,
    rules: Iterable[AvailabilityRule],
    reservations: Iterable[ReservationInterval],
) -> list[TimeSlot]:
    rules = list(rules)
    reservations = list(reservations)
    slots: list[TimeSlot] = []

    for day in iterate_days(range_start, range_end):
        rule = find_rule(rules, day_of_week(day))
        if rule is None:
            continue

        day_open = datetime.combine(day, rule.start_time)
        day_close = datetime.combine(day, rule.end_time)
        if day_open >= day_close:
            continue

        for slot_start, slot_end in iterate_slot_windows(day_open, day_close):
            if is_slot_free(slot_start, slot_end, reservations):
                slots.append(TimeSlot(start=slot_start, end=slot_end))

    return slots


def generate_default_slots(
    range_start: datetime,
    range_end: datetime,
    now: datetime,
    open_time: time | None = None,
    close_time: time | None = None,
) -> list[TimeSlot]:
    """Synthetic schedule used when no availability rules can be read.

    Past days are skipped and nothing starting before ``now`` is emitted.
    """
    open_time = open_time or config.DEFAULT_OPEN_TIME
    close_time = close_time or config.DEFAULT_CLOSE_TIME
    slots: list[TimeSlot] = []

    for day in iterate_days(range_start, range_end):
        if day < now.date():
            continue

        day_open = datetime.combine(day, open_time)
        day_close = datetime.combine(day, close_time)
        for slot_start, slot_end in iterate_slot_windows(day_open, day_close):
            if slot_start >= now:
                slots.append(TimeSlot(start=slot_start, end=slot_end))

    return slots


def merge_calendar_slots(
    free_slots: Iterable[TimeSlot],
    reservations: Iterable[ReservationInterval],
) -> list[TimeSlot]:
    booked_slots = [
        TimeSlot(
            start=reservation.start_time,
            end=reservation.end_time,
            reservation=SlotReservation(
                id=reservation.id,
                title=reservation.title,
                status=reservation.status,
            ),
        )
        for reservation in reservations
        if not reservation.is_cancelled
    ]
    return sorted([*free_slots, *booked_slots], key=lambda slot: (slot.start, slot.end))
