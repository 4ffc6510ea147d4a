import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import UserContext, get_current_user
from booking.core import config
from booking.core.errors import AuthError, NotFoundError, ValidationError
from booking.database import database_unavailable, get_db
from booking.models.reservation import Reservation
from booking.models.user import USER_ROLES, User

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('first_name', 'last_name', 'phone')
DEFAULT_USER_PAGE_SIZE = 20


class UpdateProfileRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: str | None = None

    @field_validator('first_name', 'last_name', 'phone')
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError(f'Role must be one of: {", ".join(USER_ROLES)}')
        return normalized


class RecentReservationResponse(BaseModel):
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: str

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str
    phone: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    reservations: list[RecentReservationResponse] | None = None

    class Config:
        from_attributes = True


class UserEnvelope(BaseModel):
    data: UserResponse | None = None
    message: str | None = None


class UserPagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias='totalPages')

    class Config:
        populate_by_name = True


class UserListResponse(BaseModel):
    data: list[UserResponse]
    pagination: UserPagination


def validate_names(changes: dict) -> None:
    if changes.get('first_name') == '':
        raise ValidationError('Validation failed', {'first_name': 'First name cannot be empty'})
    if changes.get('last_name') == '':
        raise ValidationError('Validation failed', {'last_name': 'Last name cannot be empty'})


def collect_profile_changes(data: UpdateProfileRequest, allow_role: bool) -> dict:
    fields = PROFILE_FIELDS + ('role',) if allow_role else PROFILE_FIELDS
    changes = {field: getattr(data, field) for field in fields if getattr(data, field) is not None}
    validate_names(changes)
    return changes


def get_recent_reservations(user_id: str, db: Session) -> list[Reservation]:
    return db.query(Reservation).filter(
        Reservation.customer_id == user_id,
    ).order_by(Reservation.start_time.desc()).limit(config.RECENT_RESERVATIONS_LIMIT).all()


def to_user_response(user: User, reservations: list[Reservation] | None = None) -> UserResponse:
    response = UserResponse.model_validate(user)
    if reservations is not None:
        response.reservations = [RecentReservationResponse.model_validate(item) for item in reservations]
    return response


def find_profile(user_id: str, db: Session) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def add_profile(current_user: UserContext, db: Session) -> User:
    """Insert a profile built from token claims; the caller commits."""
    user = User(
        id=current_user.user_id,
        email=current_user.email,
        first_name='',
        last_name='',
        role=current_user.role,
    )
    db.add(user)
    db.flush()
    logger.info('Added profile for user %s', current_user.user_id)
    return user


def find_or_add_profile(current_user: UserContext, db: Session) -> User:
    return find_profile(current_user.user_id, db) or add_profile(current_user, db)


def get_or_create_profile(current_user: UserContext, db: Session) -> User:
    """Load the caller's profile, creating it from token claims on first access."""
    user = find_profile(current_user.user_id, db)
    if user is None:
        user = add_profile(current_user, db)
        db.commit()
        db.refresh(user)
    return user


def apply_changes(user: User, changes: dict, db: Session) -> User:
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user


@router.get('/me', response_model=UserEnvelope, response_model_exclude_none=True)
def get_me(
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    try:
        user = get_or_create_profile(current_user, db)
        reservations = get_recent_reservations(user.id, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return UserEnvelope(data=to_user_response(user, reservations))


@router.put('/me', response_model=UserEnvelope, response_model_exclude_none=True)
def update_me(
    data: UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    changes = collect_profile_changes(data, allow_role=False)
    if not changes:
        return UserEnvelope(message='No changes to update')

    try:
        user = find_profile(current_user.user_id, db)
        if user is None:
            raise NotFoundError('User')
        user = apply_changes(user, changes, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return UserEnvelope(data=to_user_response(user), message='Profile updated successfully')


@router.post('/me', response_model=UserEnvelope, response_model_exclude_none=True)
def upsert_me(
    data: UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    try:
        user = find_profile(current_user.user_id, db)
        if user is None:
            first_name = data.first_name or ''
            last_name = data.last_name or ''
            if not first_name:
                raise ValidationError('Validation failed', {'first_name': 'First name is required'})
            if not last_name:
                raise ValidationError('Validation failed', {'last_name': 'Last name is required'})

            user = User(
                id=current_user.user_id,
                email=current_user.email,
                first_name=first_name,
                last_name=last_name,
                role=current_user.role,
                phone=data.phone or None,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return UserEnvelope(data=to_user_response(user), message='Profile created successfully')

        changes = collect_profile_changes(data, allow_role=False)
        if not changes:
            return UserEnvelope(message='No changes to update')
        user = apply_changes(user, changes, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return UserEnvelope(data=to_user_response(user), message='Profile updated successfully')


@router.get('/users', response_model=UserListResponse, response_model_exclude_none=True)
def list_users(
    search: str = Query(default=''),
    role: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_USER_PAGE_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    if not current_user.is_admin:
        raise AuthError('Only administrators can access this endpoint')

    query = db.query(User)
    term = search.strip()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
        )
    if role:
        query = query.filter(User.role == role.strip().lower())

    try:
        total = query.count()
        users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return UserListResponse(
        data=[to_user_response(user) for user in users],
        pagination=UserPagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get('/users/{user_id}', response_model=UserEnvelope, response_model_exclude_none=True)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    if not current_user.is_admin and current_user.user_id != user_id:
        raise AuthError('You do not have permission to access this user profile')

    try:
        user = find_profile(user_id, db)
        if user is None:
            raise NotFoundError('User')

        reservations = None
        if current_user.is_admin or current_user.is_staff:
            reservations = get_recent_reservations(user_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return UserEnvelope(data=to_user_response(user, reservations))


@router.put('/users/{user_id}', response_model=UserEnvelope, response_model_exclude_none=True)
def update_user(
    user_id: str,
    data: UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: UserContext = Depends(get_current_user),
):
    if not current_user.is_admin and current_user.user_id != user_id:
        raise AuthError('You do not have permission to update this user profile')

    changes = collect_profile_changes(data, allow_role=current_user.is_admin)
    if not changes:
        return UserEnvelope(message='No changes to update')

    try:
        user = find_profile(user_id, db)
        if user is None:
            raise NotFoundError('User')
        user = apply_changes(user, changes, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s updated by %s', user_id, current_user.user_id)
    return UserEnvelope(data=to_user_response(user), message='User updated successfully')
