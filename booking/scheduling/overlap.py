"""Interval overlap detection shared by slot generation and the write path.

Intervals are half-open ``[start, end)``: an interval ending at 10:30 and one
starting at 10:30 do not overlap.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from booking.core.errors import ValidationError
from booking.models.reservation import CANCELLED_STATUS

OVERLAPPING_RESERVATION_MESSAGE = 'Overlapping reservation'


@dataclass(frozen=True)
class ReservationInterval:
    id: str
    start_time: datetime
    end_time: datetime
    status: str
    title: str | None = None

    @classmethod
    def from_record(cls, record) -> 'ReservationInterval':
        return cls(
            id=record.id,
            start_time=record.start_time,
            end_time=record.end_time,
            status=record.status,
            title=getattr(record, 'title', None),
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == CANCELLED_STATUS


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Three clauses: a starts inside b, a ends inside b, a contains b.
    return (
        (a_start >= b_start and a_start < b_end)
        or (a_end > b_start and a_end <= b_end)
        or (a_start <= b_start and a_end >= b_end)
    )


def validate_time_range(start_time: datetime, end_time: datetime) -> None:
    if start_time >= end_time:
        raise ValidationError('Invalid time range', {'time': 'End time must be after start time'})


def check_overlap(
    proposed_start: datetime,
    proposed_end: datetime,
    existing: Iterable[ReservationInterval],
    exclude_id: str | None = None,
) -> ReservationInterval | None:
    """Return the first non-cancelled interval that conflicts with the proposal.

    ``exclude_id`` skips the reservation being edited so it cannot conflict
    with its own previous interval.
    """
    validate_time_range(proposed_start, proposed_end)

    for interval in existing:
        if interval.is_cancelled:
            continue
        if exclude_id is not None and interval.id == exclude_id:
            continue
        if overlaps(proposed_start, proposed_end, interval.start_time, interval.end_time):
            return interval

    return None


def overlap_error() -> ValidationError:
    return ValidationError(OVERLAPPING_RESERVATION_MESSAGE, {'time': 'This time slot is already booked'})
