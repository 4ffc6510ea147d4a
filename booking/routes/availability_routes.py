import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.database import database_unavailable, get_db
from booking.models.availability import AvailabilitySetting
from booking.models.reservation import CANCELLED_STATUS, Reservation
from booking.scheduling.clock import local_now
from booking.scheduling.overlap import ReservationInterval
from booking.scheduling.slots import (
    TimeSlot,
    day_of_week,
    generate_default_slots,
    generate_slots,
    iterate_days,
    merge_calendar_slots,
    resolve_query_range,
)

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_NOTE = 'Using default availability due to database setup issues'


class AvailabilityMeta(BaseModel):
    total: int
    start_date: datetime = Field(alias='startDate')
    end_date: datetime = Field(alias='endDate')
    note: str | None = None

    class Config:
        populate_by_name = True


class AvailabilityResponse(BaseModel):
    data: list[TimeSlot]
    meta: AvailabilityMeta


def build_response(slots: list[TimeSlot], range_start: datetime, range_end: datetime, note: str | None = None):
    return AvailabilityResponse(
        data=slots,
        meta=AvailabilityMeta(total=len(slots), start_date=range_start, end_date=range_end, note=note),
    )


def get_availability_rules(range_start: datetime, range_end: datetime, db: Session) -> list[AvailabilitySetting]:
    weekdays = {day_of_week(day) for day in iterate_days(range_start, range_end)}
    return db.query(AvailabilitySetting).filter(
        AvailabilitySetting.day_of_week.in_(weekdays),
        AvailabilitySetting.is_available.is_(True),
    ).order_by(AvailabilitySetting.id.asc()).all()


def get_active_reservations(range_start: datetime, range_end: datetime, db: Session) -> list[ReservationInterval]:
    reservations = db.query(Reservation).filter(
        Reservation.status != CANCELLED_STATUS,
        Reservation.start_time <= range_end,
        Reservation.end_time >= range_start,
    ).order_by(Reservation.start_time.asc()).all()

    return [ReservationInterval.from_record(reservation) for reservation in reservations]


def compute_availability(
    range_start: datetime,
    range_end: datetime,
    db: Session,
    include_booked: bool = False,
) -> AvailabilityResponse:
    try:
        rules = get_availability_rules(range_start, range_end, db)
    except SQLAlchemyError:
        logger.exception('Availability settings unreadable; falling back to the default schedule')
        db.rollback()
        slots = generate_default_slots(range_start, range_end, now=local_now())
        return build_response(slots, range_start, range_end, note=DEFAULT_SCHEDULE_NOTE)

    try:
        reservations = get_active_reservations(range_start, range_end, db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    slots = generate_slots(range_start, range_end, rules, reservations)
    if include_booked:
        slots = merge_calendar_slots(slots, reservations)

    return build_response(slots, range_start, range_end)


@router.get('', response_model=AvailabilityResponse, response_model_exclude_none=True)
def list_available_slots(
    date: str | None = Query(default=None),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
):
    range_start, range_end = resolve_query_range(date, start_date, end_date)
    return compute_availability(range_start, range_end, db)


@router.get('/calendar', response_model=AvailabilityResponse, response_model_exclude_none=True)
def list_calendar_slots(
    date: str | None = Query(default=None),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
):
    range_start, range_end = resolve_query_range(date, start_date, end_date)
    return compute_availability(range_start, range_end, db, include_booked=True)
