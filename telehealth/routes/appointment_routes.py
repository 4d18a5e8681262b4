from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_user, require_patient
from telehealth.core.errors import BadRequestError, storage_unavailable
from telehealth.database import ensure_schema, get_db
from telehealth.models.appointment import (
    CONSULTATION_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    Appointment,
)
from telehealth.models.user import ADMIN_ROLE, DOCTOR_ROLE, User
from telehealth.services import booking
from telehealth.services.payment_gateway import get_payment_gateway

router = APIRouter(tags=['appointments'])

MAX_SYMPTOMS_LENGTH = 256
MAX_NOTES_LENGTH = 256
MAX_DOCTOR_NOTES_LENGTH = 2000
UPDATABLE_STATUSES = {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW}


def _normalize_consultation_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in CONSULTATION_TYPES:
        raise ValueError('Consultation type must be video or chat.')
    return normalized


def _normalize_optional_text(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'Notes must be {max_length} characters or fewer.')

    return normalized


class PaymentIntentRequest(BaseModel):
    provider_id: int
    appointment_date: date
    start_time: time
    end_time: time
    consultation_type: str
    symptoms: str
    patient_notes: str | None = None

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str) -> str:
        return _normalize_consultation_type(value)

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Symptoms are required.')
        if len(normalized) > MAX_SYMPTOMS_LENGTH:
            raise ValueError(f'Symptoms must be {MAX_SYMPTOMS_LENGTH} characters or fewer.')
        return normalized

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_NOTES_LENGTH)


class PaymentIntentResponse(BaseModel):
    order_id: str
    amount: int
    currency: str
    key_id: str
    doctor_name: str


class ConfirmAppointmentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    provider_id: int | None = None
    appointment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    consultation_type: str | None = None

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_consultation_type(value)

    def requested_details(self) -> dict:
        return {
            'provider_id': self.provider_id,
            'date': self.appointment_date,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'consultation_type': self.consultation_type,
        }


class UpdateAppointmentRequest(BaseModel):
    status: str | None = None
    doctor_notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in UPDATABLE_STATUSES:
            raise ValueError('Status must be completed, cancelled or no-show.')
        return normalized

    @field_validator('doctor_notes')
    @classmethod
    def validate_doctor_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_DOCTOR_NOTES_LENGTH)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    provider_id: int
    date: date
    start_time: time
    end_time: time
    consultation_type: str
    status: str
    symptoms: str | None = None
    patient_notes: str | None = None
    doctor_notes: str | None = None
    consultation_fee: int
    payment_status: str
    payment_id: str | None = None
    requires_refund: bool = False
    room_id: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CancelAppointmentResponse(BaseModel):
    message: str
    appointment: AppointmentResponse


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.post('/payment-intent', response_model=PaymentIntentResponse, status_code=status.HTTP_201_CREATED)
def create_payment_intent(
    data: PaymentIntentRequest,
    current_user: User = Depends(require_patient),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    if data.start_time >= data.end_time:
        raise BadRequestError('Start time must be before end time.')

    ensure_database_ready()

    return booking.create_payment_intent(
        db,
        gateway,
        current_user,
        provider_id=data.provider_id,
        on_date=data.appointment_date,
        start_time=data.start_time,
        end_time=data.end_time,
        consultation_type=data.consultation_type,
        symptoms=data.symptoms,
        patient_notes=data.patient_notes,
    )


@router.post('/confirm', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def confirm_appointment(
    data: ConfirmAppointmentRequest,
    current_user: User = Depends(require_patient),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    ensure_database_ready()

    return booking.confirm_booking(
        db,
        gateway,
        current_user,
        order_id=data.razorpay_order_id,
        payment_id=data.razorpay_payment_id,
        signature=data.razorpay_signature,
        requested=data.requested_details(),
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    on_date: date | None = Query(default=None, alias='date'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment)
        if current_user.role == DOCTOR_ROLE:
            query = query.filter(Appointment.provider_id == current_user.id)
        elif current_user.role != ADMIN_ROLE:
            query = query.filter(Appointment.patient_id == current_user.id)

        if status_filter:
            query = query.filter(Appointment.status == status_filter.strip().lower())

        if on_date is not None:
            query = query.filter(Appointment.date == on_date)

        return query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    return booking.get_appointment_for_party(db, appointment_id, current_user)


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.status is None and data.doctor_notes is None:
        raise BadRequestError('Nothing to update.')

    ensure_database_ready()

    appointment = booking.get_appointment_for_party(db, appointment_id, current_user)
    return booking.update_appointment(
        db,
        appointment,
        current_user,
        new_status=data.status,
        doctor_notes=data.doctor_notes,
    )


@router.delete('/{appointment_id}', response_model=CancelAppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    appointment = booking.get_appointment_for_party(db, appointment_id, current_user)
    cancelled = booking.cancel_appointment(db, appointment)

    return CancelAppointmentResponse(
        message='Appointment cancelled successfully.',
        appointment=AppointmentResponse.model_validate(cancelled),
    )
