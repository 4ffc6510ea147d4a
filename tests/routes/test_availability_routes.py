from datetime import datetime, time

import pytest
from sqlalchemy.exc import SQLAlchemyError

from booking.core.errors import ValidationError
from booking.models.availability import AvailabilitySetting
from booking.models.reservation import Reservation
from booking.routes.availability_routes import (
    DEFAULT_SCHEDULE_NOTE,
    get_active_reservations,
    list_available_slots,
    list_calendar_slots,
)


@pytest.fixture
def monday_schedule(booking_db):
    booking_db.add_all([
        AvailabilitySetting(day_of_week=1, start_time=time(9, 0), end_time=time(17, 0), is_available=True),
        AvailabilitySetting(day_of_week=2, start_time=time(9, 0), end_time=time(12, 0), is_available=False),
    ])
    booking_db.commit()
    return booking_db


def add_reservation(db, start: datetime, end: datetime, status: str = 'confirmed', title: str = 'Haircut') -> Reservation:
    reservation = Reservation(title=title, start_time=start, end_time=end, status=status, customer_id='c1', created_by='c1')
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    return reservation


def test_list_available_slots_for_single_day(monday_schedule) -> None:
    response = list_available_slots(date='2024-06-10', start_date=None, end_date=None, db=monday_schedule)

    assert response.meta.total == 16
    assert response.meta.note is None
    assert response.meta.start_date == datetime(2024, 6, 10, 0, 0)
    assert response.meta.end_date == datetime(2024, 6, 10, 23, 59, 59, 999000)
    assert response.data[0].start == datetime(2024, 6, 10, 9, 0)


def test_list_available_slots_serializes_camel_case_meta(monday_schedule) -> None:
    response = list_available_slots(date='2024-06-10', start_date=None, end_date=None, db=monday_schedule)

    payload = response.model_dump(by_alias=True, exclude_none=True)

    assert set(payload['meta']) == {'total', 'startDate', 'endDate'}


def test_list_available_slots_excludes_booked_but_not_cancelled(monday_schedule) -> None:
    add_reservation(monday_schedule, datetime(2024, 6, 10, 9, 0), datetime(2024, 6, 10, 10, 0))
    add_reservation(monday_schedule, datetime(2024, 6, 10, 14, 0), datetime(2024, 6, 10, 14, 30), status='cancelled')

    response = list_available_slots(date='2024-06-10', start_date=None, end_date=None, db=monday_schedule)
    starts = {slot.start for slot in response.data}

    assert response.meta.total == 14
    assert datetime(2024, 6, 10, 9, 0) not in starts
    assert datetime(2024, 6, 10, 9, 30) not in starts
    assert datetime(2024, 6, 10, 14, 0) in starts


def test_list_available_slots_ignores_disabled_rules(monday_schedule) -> None:
    response = list_available_slots(date='2024-06-11', start_date=None, end_date=None, db=monday_schedule)

    assert response.data == []


def test_list_available_slots_matches_explicit_range(monday_schedule) -> None:
    by_date = list_available_slots(date='2024-06-10', start_date=None, end_date=None, db=monday_schedule)
    by_range = list_available_slots(
        date=None,
        start_date='2024-06-10T00:00:00.000Z',
        end_date='2024-06-10T23:59:59.999Z',
        db=monday_schedule,
    )

    assert by_date.data == by_range.data


def test_list_available_slots_rejects_invalid_dates(monday_schedule) -> None:
    with pytest.raises(ValidationError) as exception_info:
        list_available_slots(date=None, start_date='not-a-date', end_date='2024-06-10', db=monday_schedule)

    assert exception_info.value.status_code == 400
    assert 'date' in exception_info.value.fields


def test_list_available_slots_falls_back_to_default_schedule(booking_db, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_rules(*_args):
        raise SQLAlchemyError('relation "availability_settings" does not exist')

    monkeypatch.setattr('booking.routes.availability_routes.get_availability_rules', broken_rules)
    monkeypatch.setattr('booking.routes.availability_routes.local_now', lambda: datetime(2024, 6, 11, 8, 0))

    response = list_available_slots(date=None, start_date='2024-06-10', end_date='2024-06-11T23:59:59', db=booking_db)

    assert response.meta.note == DEFAULT_SCHEDULE_NOTE
    assert response.meta.total == 16
    assert all(slot.start >= datetime(2024, 6, 11, 8, 0) for slot in response.data)


def test_active_reservation_lookup_includes_boundary_touching_records(booking_db) -> None:
    add_reservation(booking_db, datetime(2024, 6, 9, 23, 0), datetime(2024, 6, 10, 0, 0), title='Ends at midnight')
    add_reservation(booking_db, datetime(2024, 6, 10, 23, 30), datetime(2024, 6, 11, 0, 30), title='Spans midnight')
    add_reservation(booking_db, datetime(2024, 6, 12, 9, 0), datetime(2024, 6, 12, 10, 0), title='Outside')
    add_reservation(booking_db, datetime(2024, 6, 10, 9, 0), datetime(2024, 6, 10, 10, 0), status='cancelled')

    intervals = get_active_reservations(datetime(2024, 6, 10, 0, 0), datetime(2024, 6, 10, 23, 59, 59), booking_db)

    assert [interval.title for interval in intervals] == ['Ends at midnight', 'Spans midnight']


def test_list_calendar_slots_includes_booked_reservations(monday_schedule) -> None:
    booked = add_reservation(monday_schedule, datetime(2024, 6, 10, 9, 0), datetime(2024, 6, 10, 10, 0))

    response = list_calendar_slots(date='2024-06-10', start_date=None, end_date=None, db=monday_schedule)

    assert response.meta.total == 15
    assert response.data[0].reservation is not None
    assert response.data[0].reservation.id == booked.id
    assert response.data[0].reservation.status == 'confirmed'
    assert response.data[1].start == datetime(2024, 6, 10, 10, 0)
