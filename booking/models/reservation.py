"""Reservation model definitions."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship
from booking.database import Base

RESERVATION_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed')
CANCELLED_STATUS = 'cancelled'


def _new_id() -> str:
    return str(uuid.uuid4())


class Reservation(Base):
    """Represents a booked time interval."""
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default='pending')
    customer_id = Column(String(36), ForeignKey("users.id"), index=True)
    created_by = Column(String(36), ForeignKey("users.id"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    details = relationship(
        "ReservationDetails",
        uselist=False,
        back_populates="reservation",
        cascade="all, delete-orphan",
    )


class ReservationDetails(Base):
    """Optional extra information attached to a reservation."""
    __tablename__ = "reservation_details"

    id = Column(Integer, primary_key=True)
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), unique=True)
    special_requests = Column(Text, nullable=True)
    number_of_people = Column(Integer, nullable=True)
    additional_notes = Column(Text, nullable=True)

    reservation = relationship("Reservation", back_populates="details")
