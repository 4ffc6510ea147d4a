"""User model definitions."""

from sqlalchemy import Column, DateTime, String, func
from booking.database import Base

USER_ROLES = ('admin', 'staff', 'customer')


class User(Base):
    """Profile of an identity issued by the external auth provider."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True)  # provider subject
    email = Column(String, unique=True, index=True)
    first_name = Column(String, default='')
    last_name = Column(String, default='')
    role = Column(String, default='customer')  # admin/staff/customer
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
