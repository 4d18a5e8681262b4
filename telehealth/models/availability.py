"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from telehealth.core import config
from telehealth.database import Base


class Availability(Base):
    """One provider's open/closed status and slots for one calendar date."""
    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="uq_availability_provider_date"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    timezone = Column(String, nullable=False, default=config.DEFAULT_TIMEZONE)
    is_available = Column(Boolean, nullable=False, default=True)
    break_start = Column(Time)
    break_end = Column(Time)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    slots = relationship(
        "AvailabilitySlot",
        back_populates="availability",
        cascade="all, delete-orphan",
        order_by="AvailabilitySlot.start_time",
    )


class AvailabilitySlot(Base):
    """A bookable interval inside an availability day, in provider-local wall-clock time."""
    __tablename__ = "availability_slots"
    __table_args__ = (
        Index("idx_availability_slots_booked", "availability_id", "is_booked"),
    )

    id = Column(Integer, primary_key=True)
    availability_id = Column(Integer, ForeignKey("availability.id", ondelete="CASCADE"), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    availability = relationship("Availability", back_populates="slots")
