"""Payment-gated booking of availability slots.

The flow is two requests. ``create_payment_intent`` opens a gateway order
that carries the booking request in its notes; nothing is written locally.
``confirm_booking`` verifies the checkout signature, reads the order back,
and then, inside one database transaction, inserts a pending appointment,
claims the slot with a conditional update and flips the appointment to
scheduled. When the claim loses, the appointment is kept as ``failed`` with
``requires_refund`` set, because the payment has already been captured.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.core import config
from telehealth.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PaymentCapturedConflictError,
    PaymentIntegrityError,
    PermissionDeniedError,
    StorageError,
    UpstreamError,
    storage_unavailable,
)
from telehealth.models.appointment import (
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_NO_SHOW,
    STATUS_PENDING,
    STATUS_SCHEDULED,
    Appointment,
)
from telehealth.models.user import User
from telehealth.services.availability_store import claim_slot, find_availability, find_slot, release_slot

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('telehealth.security')

ALLOWED_TRANSITIONS = {
    STATUS_SCHEDULED: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW},
}

_CLOCK_FORMAT = '%H:%M'


@dataclass(frozen=True)
class BookingDetails:
    """What the patient asked to book. Round-trips through gateway order notes."""

    patient_id: int
    provider_id: int
    date: date
    start_time: time
    end_time: time
    consultation_type: str
    symptoms: str
    patient_notes: str
    consultation_fee: int

    def to_notes(self) -> dict[str, str]:
        notes = {key: str(value) for key, value in asdict(self).items()}
        notes['date'] = self.date.isoformat()
        notes['start_time'] = self.start_time.strftime(_CLOCK_FORMAT)
        notes['end_time'] = self.end_time.strftime(_CLOCK_FORMAT)
        return notes

    @classmethod
    def from_notes(cls, notes: dict) -> 'BookingDetails':
        try:
            return cls(
                patient_id=int(notes['patient_id']),
                provider_id=int(notes['provider_id']),
                date=date.fromisoformat(notes['date']),
                start_time=datetime.strptime(notes['start_time'], _CLOCK_FORMAT).time(),
                end_time=datetime.strptime(notes['end_time'], _CLOCK_FORMAT).time(),
                consultation_type=notes['consultation_type'],
                symptoms=notes.get('symptoms', ''),
                patient_notes=notes.get('patient_notes', ''),
                consultation_fee=int(float(notes['consultation_fee'])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError('Payment order is missing booking details.') from exc


def generate_room_id() -> str:
    return f'room_{uuid.uuid4().hex[:12]}'


def get_provider(db: Session, provider_id: int) -> User:
    provider = db.query(User).filter(User.id == provider_id).first()
    if provider is None or not provider.is_doctor:
        raise NotFoundError('Doctor not found.')
    if not provider.consultation_fee or provider.consultation_fee <= 0:
        raise BadRequestError('Doctor has no consultation fee configured.')
    return provider


def create_payment_intent(
    db: Session,
    gateway,
    patient: User,
    provider_id: int,
    on_date: date,
    start_time: time,
    end_time: time,
    consultation_type: str,
    symptoms: str,
    patient_notes: str | None = None,
) -> dict:
    try:
        provider = get_provider(db, provider_id)

        availability = find_availability(db, provider_id, on_date)
        if availability is None or not availability.is_available:
            raise NotFoundError('Doctor is not available on this date.')

        slot = find_slot(db, availability.id, start_time, end_time)
        if slot is None:
            raise NotFoundError('Time slot not found.')
        if slot.is_booked:
            raise ConflictError('Time slot is already booked.')
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc

    details = BookingDetails(
        patient_id=patient.id,
        provider_id=provider.id,
        date=on_date,
        start_time=start_time,
        end_time=end_time,
        consultation_type=consultation_type,
        symptoms=symptoms,
        patient_notes=patient_notes or '',
        consultation_fee=provider.consultation_fee,
    )
    receipt = f'b_{patient.id}_{uuid.uuid4().hex[:10]}'
    order = gateway.create_order(
        amount=provider.consultation_fee * 100,
        currency=config.PAYMENT_CURRENCY,
        receipt=receipt,
        notes=details.to_notes(),
    )

    logger.info(
        'Opened payment order %s for patient %s with provider %s on %s %s-%s',
        order['id'],
        patient.id,
        provider.id,
        on_date,
        start_time,
        end_time,
    )

    return {
        'order_id': order['id'],
        'amount': order.get('amount', provider.consultation_fee * 100),
        'currency': order.get('currency', config.PAYMENT_CURRENCY),
        'key_id': getattr(gateway, 'key_id', ''),
        'doctor_name': provider.full_name or provider.email,
    }


def _record_failed_booking(db: Session, appointment: Appointment, reason: str) -> None:
    appointment.status = STATUS_FAILED
    appointment.requires_refund = True
    db.commit()
    logger.error(
        'Payment %s (order %s) captured but booking denied: %s. '
        'Appointment %s flagged for refund.',
        appointment.payment_id,
        appointment.payment_order_id,
        reason,
        appointment.id,
    )


def confirm_booking(
    db: Session,
    gateway,
    patient: User,
    order_id: str,
    payment_id: str,
    signature: str,
    requested: dict | None = None,
) -> Appointment:
    if not gateway.verify_signature(order_id, payment_id, signature):
        security_logger.warning(
            'Payment signature mismatch for order %s payment %s submitted by user %s',
            order_id,
            payment_id,
            patient.id,
        )
        raise PaymentIntegrityError('Invalid payment signature.')

    order = gateway.fetch_order(order_id)
    if not order.get('notes'):
        raise NotFoundError('Order data not found.')

    details = BookingDetails.from_notes(order['notes'])
    if details.patient_id != patient.id:
        raise PermissionDeniedError('This payment belongs to another patient.')

    for field, value in (requested or {}).items():
        if value is not None and getattr(details, field) != value:
            raise BadRequestError('Booking details do not match the authorized payment.')

    try:
        existing = db.query(Appointment).filter(Appointment.payment_order_id == order_id).first()
        if existing is not None:
            raise ConflictError(
                'Appointment already created for this payment.',
                appointment_id=existing.id,
            )

        appointment = Appointment(
            patient_id=details.patient_id,
            provider_id=details.provider_id,
            date=details.date,
            start_time=details.start_time,
            end_time=details.end_time,
            consultation_type=details.consultation_type,
            symptoms=details.symptoms,
            patient_notes=details.patient_notes or None,
            consultation_fee=details.consultation_fee,
            status=STATUS_PENDING,
            payment_status=PAYMENT_PAID,
            payment_id=payment_id,
            payment_order_id=order_id,
            room_id=generate_room_id() if details.consultation_type == 'video' else None,
        )
        db.add(appointment)
        db.flush()

        availability = find_availability(db, details.provider_id, details.date)
        slot = None
        if availability is not None:
            slot = find_slot(db, availability.id, details.start_time, details.end_time)

        if slot is None:
            _record_failed_booking(db, appointment, 'slot no longer exists')
            raise PaymentCapturedConflictError(
                'Payment received but the selected time slot no longer exists. '
                'The payment has been flagged for refund.',
                appointment_id=appointment.id,
                payment_id=payment_id,
            )

        if not claim_slot(db, slot.id, appointment.id):
            _record_failed_booking(db, appointment, f'slot {slot.id} already booked')
            raise PaymentCapturedConflictError(
                'Payment received but the time slot was booked by someone else. '
                'The payment has been flagged for refund.',
                appointment_id=appointment.id,
                payment_id=payment_id,
            )

        appointment.status = STATUS_SCHEDULED
        db.commit()
        db.refresh(appointment)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('Appointment already created for this payment.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Storing appointment for order %s failed after payment %s', order_id, payment_id)
        raise storage_unavailable() from exc

    logger.info(
        'Appointment %s scheduled for patient %s with provider %s on %s %s-%s',
        appointment.id,
        appointment.patient_id,
        appointment.provider_id,
        appointment.date,
        appointment.start_time,
        appointment.end_time,
    )
    return appointment


def get_appointment_for_party(db: Session, appointment_id: int, user: User) -> Appointment:
    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc

    if appointment is None:
        raise NotFoundError('Appointment not found.')
    if not appointment.involves(user.id):
        raise PermissionDeniedError('Unauthorized access.')
    return appointment


def _cancel(db: Session, appointment: Appointment) -> None:
    appointment.status = STATUS_CANCELLED
    if not release_slot(db, appointment):
        logger.warning(
            'Cancelled appointment %s but found no slot to release for provider %s on %s %s-%s',
            appointment.id,
            appointment.provider_id,
            appointment.date,
            appointment.start_time,
            appointment.end_time,
        )


def cancel_appointment(db: Session, appointment: Appointment) -> Appointment:
    if appointment.status != STATUS_SCHEDULED:
        raise ConflictError(f'Only scheduled appointments can be cancelled (current status: {appointment.status}).')

    try:
        _cancel(db, appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise storage_unavailable() from exc

    return appointment


def update_appointment(
    db: Session,
    appointment: Appointment,
    actor: User,
    new_status: str | None = None,
    doctor_notes: str | None = None,
) -> Appointment:
    if doctor_notes is not None and actor.id != appointment.provider_id:
        raise PermissionDeniedError('Only the doctor can add consultation notes.')

    if new_status is not None and new_status != appointment.status:
        if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
            raise ConflictError(f'Cannot change appointment status from {appointment.status} to {new_status}.')

    try:
        if new_status == STATUS_CANCELLED and appointment.status == STATUS_SCHEDULED:
            _cancel(db, appointment)
        elif new_status is not None:
            appointment.status = new_status

        if doctor_notes is not None:
            appointment.doctor_notes = doctor_notes

        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise storage_unavailable() from exc

    return appointment


def refund_appointment(db: Session, gateway, appointment: Appointment, reason: str | None = None) -> dict:
    if appointment.payment_status != PAYMENT_PAID:
        raise BadRequestError('Appointment is not paid.')
    if not appointment.payment_id:
        raise BadRequestError('No payment ID found.')

    refund = gateway.refund_payment(
        appointment.payment_id,
        amount=appointment.consultation_fee * 100,
        notes={
            'reason': reason or 'Appointment cancelled',
            'appointment_id': str(appointment.id),
        },
    )

    try:
        if appointment.status == STATUS_SCHEDULED:
            _cancel(db, appointment)
        elif appointment.status != STATUS_FAILED:
            appointment.status = STATUS_CANCELLED
        appointment.payment_status = PAYMENT_REFUNDED
        appointment.requires_refund = False
        appointment.refund_id = refund['id']
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            'Refund %s issued for payment %s but appointment %s was not updated',
            refund['id'],
            appointment.payment_id,
            appointment.id,
        )
        raise StorageError('Refund issued but could not be recorded. Please contact support.') from exc

    logger.info('Refunded payment %s for appointment %s', appointment.payment_id, appointment.id)

    return {
        'id': refund['id'],
        'amount': refund.get('amount', appointment.consultation_fee * 100) / 100,
        'status': refund.get('status', 'processed'),
    }
