"""Availability model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, Time, func
from booking.database import Base


class AvailabilitySetting(Base):
    """Weekly recurring open window for one weekday (0 = Sunday)."""
    __tablename__ = "availability_settings"

    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
