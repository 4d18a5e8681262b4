from datetime import date, time

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_user
from telehealth.core.errors import storage_unavailable
from telehealth.database import ensure_schema, get_db
from telehealth.models.appointment import PAYMENT_PAID, PAYMENT_REFUNDED, Appointment
from telehealth.models.user import DOCTOR_ROLE, User
from telehealth.services import booking
from telehealth.services.payment_gateway import get_payment_gateway

router = APIRouter(tags=['payments'])


class RefundRequest(BaseModel):
    appointment_id: int
    reason: str | None = None


class RefundDetails(BaseModel):
    id: str
    amount: float
    status: str


class RefundResponse(BaseModel):
    message: str
    refund: RefundDetails


class PaymentHistoryEntry(BaseModel):
    appointment_id: int
    patient_id: int
    provider_id: int
    date: date
    start_time: time
    end_time: time
    amount: int
    payment_status: str
    payment_id: str | None = None
    refund_id: str | None = None
    requires_refund: bool = False
    status: str


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.post('/refund', response_model=RefundResponse)
def refund_payment(
    data: RefundRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    ensure_database_ready()

    appointment = booking.get_appointment_for_party(db, data.appointment_id, current_user)
    refund = booking.refund_appointment(db, gateway, appointment, reason=data.reason)

    return RefundResponse(
        message='Refund initiated successfully.',
        refund=RefundDetails(**refund),
    )


@router.get('/history', response_model=list[PaymentHistoryEntry])
def payment_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(
            Appointment.payment_status.in_([PAYMENT_PAID, PAYMENT_REFUNDED]),
        )
        if current_user.role == DOCTOR_ROLE:
            query = query.filter(Appointment.provider_id == current_user.id)
        else:
            query = query.filter(Appointment.patient_id == current_user.id)

        appointments = query.order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc

    return [
        PaymentHistoryEntry(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            provider_id=appointment.provider_id,
            date=appointment.date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            amount=appointment.consultation_fee,
            payment_status=appointment.payment_status,
            payment_id=appointment.payment_id,
            refund_id=appointment.refund_id,
            requires_refund=appointment.requires_refund,
            status=appointment.status,
        )
        for appointment in appointments
    ]
