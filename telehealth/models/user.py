"""User model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from telehealth.database import Base

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"
ADMIN_ROLE = "admin"
ROLES = (PATIENT_ROLE, DOCTOR_ROLE, ADMIN_ROLE)


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default=PATIENT_ROLE)  # patient/doctor/admin
    full_name = Column(String)
    consultation_fee = Column(Integer)  # whole rupees, doctors only
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_doctor(self) -> bool:
        return self.role == DOCTOR_ROLE
