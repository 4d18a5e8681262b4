"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Time
from telehealth.database import Base

STATUS_PENDING = "pending"
STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no-show"
STATUS_FAILED = "failed"

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

CONSULTATION_TYPES = ("video", "chat")


class Appointment(Base):
    """Represents a paid booking of one slot."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_provider_date", "provider_id", "date"),
        Index("idx_appointments_patient_date", "patient_id", "date"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    # Copied from the slot at booking time.
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    consultation_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    symptoms = Column(String)
    patient_notes = Column(String)
    doctor_notes = Column(String)
    consultation_fee = Column(Integer, nullable=False)
    payment_status = Column(String, nullable=False, default=PAYMENT_PENDING)
    payment_id = Column(String)
    payment_order_id = Column(String, unique=True, index=True)
    refund_id = Column(String)
    requires_refund = Column(Boolean, nullable=False, default=False)
    room_id = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def involves(self, user_id: int) -> bool:
        return user_id in (self.patient_id, self.provider_id)
