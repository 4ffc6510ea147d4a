import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import not_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import UserContext, get_current_user
from booking.core import config
from booking.core.errors import AuthError, NotFoundError, ValidationError
from booking.database import (
    database_unavailable,
    ensure_reservation_schema,
    get_db,
    is_foreign_key_violation,
    is_overlap_violation,
)
from booking.models.reservation import (
    CANCELLED_STATUS,
    RESERVATION_STATUSES,
    Reservation,
    ReservationDetails,
)
from booking.routes.user_routes import find_or_add_profile
from booking.scheduling.clock import to_local_naive
from booking.scheduling.overlap import (
    ReservationInterval,
    check_overlap,
    overlap_error,
    validate_time_range,
)
from booking.scheduling.slots import parse_timestamp

router = APIRouter(tags=['reservations'])

logger = logging.getLogger(__name__)

DETAIL_FIELDS = ('special_requests', 'number_of_people', 'additional_notes')
MAX_PAGE_SIZE = 100


def _normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in RESERVATION_STATUSES:
        raise ValueError(f'Status must be one of: {", ".join(RESERVATION_STATUSES)}')
    return normalized


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateReservationRequest(BaseModel):
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    status: str = 'pending'
    customer_id: str | None = None
    special_requests: str | None = None
    number_of_people: int | None = Field(default=None, ge=1)
    additional_notes: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('title is required')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_status(value)

    @field_validator('description', 'special_requests', 'additional_notes', 'customer_id')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    def has_details(self) -> bool:
        return any(getattr(self, field) is not None for field in DETAIL_FIELDS)


class UpdateReservationRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: str | None = None
    customer_id: str | None = None
    special_requests: str | None = None
    number_of_people: int | None = Field(default=None, ge=1)
    additional_notes: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title cannot be empty')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_local_naive(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _normalize_status(value)

    def provided_details(self) -> dict:
        return {field: getattr(self, field) for field in DETAIL_FIELDS if field in self.model_fields_set}


class ReservationDetailsResponse(BaseModel):
    special_requests: str | None = None
    number_of_people: int | None = None
    additional_notes: str | None = None

    class Config:
        from_attributes = True


class ReservationResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    customer_id: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    details: ReservationDetailsResponse | None = None

    class Config:
        from_attributes = True


class ReservationEnvelope(BaseModel):
    data: ReservationResponse


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias='totalPages')

    class Config:
        populate_by_name = True


class ReservationListResponse(BaseModel):
    data: list[ReservationResponse]
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str


def ensure_database_ready() -> None:
    try:
        ensure_reservation_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def find_conflicting_reservation(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    exclude_id: str | None = None,
) -> ReservationInterval | None:
    validate_time_range(start_time, end_time)

    query = db.query(Reservation).filter(
        Reservation.status != CANCELLED_STATUS,
        not_(or_(Reservation.end_time <= start_time, Reservation.start_time >= end_time)),
    )
    if exclude_id is not None:
        query = query.filter(Reservation.id != exclude_id)

    candidates = [ReservationInterval.from_record(row) for row in query.order_by(Reservation.start_time.asc()).all()]
    return check_overlap(start_time, end_time, candidates, exclude_id=exclude_id)


def ensure_no_overlap(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    exclude_id: str | None = None,
) -> None:
    conflict = find_conflicting_reservation(db, start_time, end_time, exclude_id=exclude_id)
    if conflict is not None:
        logger.info('Rejected reservation %s - %s: overlaps %s', start_time, end_time, conflict.id)
        raise overlap_error()


def commit_reservation(db: Session, reservation: Reservation) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_overlap_violation(exc):
            raise overlap_error() from exc
        if is_foreign_key_violation(exc):
            raise ValidationError('Validation failed', {'customer_id': 'Customer not found'}) from exc
        raise database_unavailable(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
    db.refresh(reservation)


def save_reservation_details(db: Session, reservation: Reservation, values: dict) -> bool:
    """Insert or update the details row; failures are logged and swallowed.

    Returns False when the write failed. The session is rolled back in that
    case, so ``reservation`` is expired and must not be read again.
    """
    reservation_id = reservation.id
    try:
        details = db.query(ReservationDetails).filter(
            ReservationDetails.reservation_id == reservation_id,
        ).first()
        if details is None:
            details = ReservationDetails(reservation_id=reservation_id)
            db.add(details)
        for field, value in values.items():
            setattr(details, field, value)
        db.commit()
        db.refresh(reservation)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to save reservation details for %s', reservation_id)
        return False
    return True


def get_reservation_or_404(reservation_id: str, db: Session) -> Reservation:
    try:
        reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if reservation is None:
        raise NotFoundError('Reservation')
    return reservation


def check_read_access(current_user: UserContext, reservation: Reservation) -> None:
    if current_user.is_customer and reservation.customer_id != current_user.user_id:
        raise AuthError('You do not have permission to access this reservation')


def check_write_access(current_user: UserContext, reservation: Reservation, action: str) -> None:
    if current_user.is_customer and reservation.customer_id != current_user.user_id:
        raise AuthError(f'You do not have permission to {action} this reservation')

    if current_user.is_staff and reservation.created_by != current_user.user_id:
        raise AuthError(f'Staff can only {action} reservations they created')


def resolve_customer_id(current_user: UserContext, requested_customer_id: str | None) -> str:
    if requested_customer_id is None or requested_customer_id == current_user.user_id:
        return current_user.user_id

    if current_user.is_customer:
        raise AuthError('Customers can only create reservations for themselves')

    return requested_customer_id


@router.get('', response_model=ReservationListResponse)
def list_reservations(
    status_filter: str | None = Query(default=None, alias='status'),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    only_mine: bool = Query(default=False, alias='onlyMine'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    query = db.query(Reservation)

    if current_user.is_customer:
        query = query.filter(Reservation.customer_id == current_user.user_id)
    elif current_user.is_staff and only_mine:
        query = query.filter(Reservation.created_by == current_user.user_id)

    if status_filter:
        query = query.filter(Reservation.status == status_filter.strip().lower())
    if start_date:
        query = query.filter(Reservation.start_time >= parse_timestamp(start_date, 'startDate'))
    if end_date:
        query = query.filter(Reservation.end_time <= parse_timestamp(end_date, 'endDate'))

    try:
        total = query.count()
        reservations = query.order_by(Reservation.start_time.asc()).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return ReservationListResponse(
        data=[ReservationResponse.model_validate(reservation) for reservation in reservations],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.post('', response_model=ReservationEnvelope, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: CreateReservationRequest,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    validate_time_range(data.start_time, data.end_time)
    customer_id = resolve_customer_id(current_user, data.customer_id)

    ensure_database_ready()

    try:
        if data.status != CANCELLED_STATUS:
            ensure_no_overlap(db, data.start_time, data.end_time)
        # created_by references the caller's profile row.
        find_or_add_profile(current_user, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    reservation = Reservation(
        title=data.title,
        description=data.description,
        start_time=data.start_time,
        end_time=data.end_time,
        status=data.status,
        customer_id=customer_id,
        created_by=current_user.user_id,
    )
    db.add(reservation)
    commit_reservation(db, reservation)
    logger.info('Created reservation %s for customer %s', reservation.id, customer_id)

    response = ReservationResponse.model_validate(reservation)
    if data.has_details():
        values = {field: getattr(data, field) for field in DETAIL_FIELDS}
        if save_reservation_details(db, reservation, values):
            response = ReservationResponse.model_validate(reservation)

    return ReservationEnvelope(data=response)


@router.get('/{reservation_id}', response_model=ReservationEnvelope)
def get_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    reservation = get_reservation_or_404(reservation_id, db)
    check_read_access(current_user, reservation)

    return ReservationEnvelope(data=ReservationResponse.model_validate(reservation))


@router.put('/{reservation_id}', response_model=ReservationEnvelope)
def update_reservation(
    reservation_id: str,
    data: UpdateReservationRequest,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    ensure_database_ready()

    reservation = get_reservation_or_404(reservation_id, db)
    check_write_access(current_user, reservation, 'update')

    start_time = data.start_time or reservation.start_time
    end_time = data.end_time or reservation.end_time
    new_status = data.status or reservation.status

    interval_changed = start_time != reservation.start_time or end_time != reservation.end_time
    reactivated = reservation.status == CANCELLED_STATUS and new_status != CANCELLED_STATUS

    if interval_changed:
        validate_time_range(start_time, end_time)

    try:
        if new_status != CANCELLED_STATUS and (interval_changed or reactivated):
            ensure_no_overlap(db, start_time, end_time, exclude_id=reservation.id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if data.title is not None:
        reservation.title = data.title
    if 'description' in data.model_fields_set:
        reservation.description = data.description
    reservation.start_time = start_time
    reservation.end_time = end_time
    reservation.status = new_status

    # Only admins may reassign the customer.
    if data.customer_id is not None and current_user.is_admin:
        reservation.customer_id = data.customer_id

    commit_reservation(db, reservation)

    response = ReservationResponse.model_validate(reservation)
    details = data.provided_details()
    if details and save_reservation_details(db, reservation, details):
        response = ReservationResponse.model_validate(reservation)

    return ReservationEnvelope(data=response)


@router.delete('/{reservation_id}', response_model=MessageResponse)
def delete_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    reservation = get_reservation_or_404(reservation_id, db)
    check_write_access(current_user, reservation, 'delete')

    try:
        db.delete(reservation)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Deleted reservation %s', reservation_id)
    return MessageResponse(message='Reservation deleted successfully')
