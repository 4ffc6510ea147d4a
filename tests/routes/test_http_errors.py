from datetime import time

import pytest
from fastapi.testclient import TestClient

from booking.auth import jwt_handler
from booking.database import get_db
from booking.main import app
from booking.models.availability import AvailabilitySetting


@pytest.fixture
def client(booking_db, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('booking.routes.reservation_routes.ensure_database_ready', lambda: None)

    def override_get_db():
        yield booking_db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id: str = 'customer-1', role: str = 'customer') -> dict:
    return {'Authorization': f'Bearer {jwt_handler.create_access_token(user_id, role=role)}'}


def test_availability_without_dates_returns_field_errors(client) -> None:
    response = client.get('/availability')

    assert response.status_code == 400
    assert response.json() == {
        'error': 'Date parameters required',
        'fields': {'date': 'Either date or startDate and endDate must be provided'},
    }


def test_availability_with_inverted_range_returns_400(client) -> None:
    response = client.get('/availability', params={'startDate': '2024-06-11', 'endDate': '2024-06-10'})

    assert response.status_code == 400
    assert response.json()['error'] == 'Invalid date range'


def test_availability_returns_slots_and_camel_case_meta(client, booking_db) -> None:
    booking_db.add(AvailabilitySetting(day_of_week=1, start_time=time(9, 0), end_time=time(10, 0), is_available=True))
    booking_db.commit()

    response = client.get('/availability', params={'date': '2024-06-10'})

    assert response.status_code == 200
    body = response.json()
    assert body['meta']['total'] == 2
    assert body['meta']['startDate'] == '2024-06-10T00:00:00'
    assert 'note' not in body['meta']
    assert body['data'][0]['start'] == '2024-06-10T09:00:00'
    assert body['data'][0]['end'] == '2024-06-10T09:30:00'
    assert 'reservation' not in body['data'][0]


def test_reservations_require_authentication(client) -> None:
    response = client.get('/reservations')

    assert response.status_code == 401
    assert response.json() == {'error': 'Authentication required'}


def test_create_reservation_reports_missing_fields(client) -> None:
    response = client.post(
        '/reservations',
        json={'start_time': '2024-06-10T10:00:00Z', 'end_time': '2024-06-10T11:00:00Z'},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json() == {'error': 'Validation failed', 'fields': {'title': 'title is required'}}


def test_create_then_overlapping_create_is_rejected(client) -> None:
    payload = {
        'title': 'Consultation',
        'start_time': '2024-06-10T10:00:00Z',
        'end_time': '2024-06-10T11:00:00Z',
        'status': 'confirmed',
    }

    created = client.post('/reservations', json=payload, headers=auth_headers())
    assert created.status_code == 201
    assert created.json()['data']['customer_id'] == 'customer-1'

    conflict = client.post(
        '/reservations',
        json={**payload, 'start_time': '2024-06-10T10:30:00Z', 'end_time': '2024-06-10T11:30:00Z'},
        headers=auth_headers('customer-2'),
    )
    assert conflict.status_code == 400
    assert conflict.json() == {
        'error': 'Overlapping reservation',
        'fields': {'time': 'This time slot is already booked'},
    }


def test_missing_reservation_returns_404(client) -> None:
    response = client.get('/reservations/does-not-exist', headers=auth_headers(role='admin'))

    assert response.status_code == 404
    assert response.json() == {'error': 'Reservation not found'}
