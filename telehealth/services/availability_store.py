"""Per (provider, date) availability records and their slots.

Reads are plain queries. The two writes that matter for booking, claiming and
releasing a slot, are single conditional UPDATE statements so that the
database arbitrates concurrent callers. Neither of them commits; the caller
owns the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from telehealth.core.errors import ConflictError
from telehealth.models.appointment import Appointment
from telehealth.models.availability import Availability, AvailabilitySlot
from telehealth.services.slot_generator import SlotWindow, generate_slots, merge_with_booked

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingWindow:
    start_time: time
    end_time: time
    duration_minutes: int
    break_start: time | None = None
    break_end: time | None = None


def find_availability(db: Session, provider_id: int, on_date: date) -> Availability | None:
    return db.query(Availability).filter(
        Availability.provider_id == provider_id,
        Availability.date == on_date,
    ).first()


def list_availability(
    db: Session,
    provider_id: int | None = None,
    on_date: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Availability]:
    query = db.query(Availability).options(selectinload(Availability.slots))

    if provider_id is not None:
        query = query.filter(Availability.provider_id == provider_id)

    if on_date is not None:
        query = query.filter(Availability.date == on_date)
    elif start_date is not None and end_date is not None:
        query = query.filter(Availability.date >= start_date, Availability.date <= end_date)

    return query.order_by(Availability.date.asc(), Availability.provider_id.asc()).all()


def find_slot(db: Session, availability_id: int, start_time: time, end_time: time) -> AvailabilitySlot | None:
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.availability_id == availability_id,
        AvailabilitySlot.start_time == start_time,
        AvailabilitySlot.end_time == end_time,
    ).first()


def set_availability(
    db: Session,
    provider_id: int,
    on_date: date,
    is_available: bool,
    window: WorkingWindow,
    timezone: str,
) -> Availability:
    """Create or update the record for ``(provider_id, on_date)`` and commit.

    Free slots are rebuilt from ``window``. Booked slots are never touched:
    they survive both a schedule change and closing the day, and new slots
    that would overlap them are skipped.
    """
    generated: list[SlotWindow] = []
    if is_available:
        generated = generate_slots(
            window.start_time,
            window.end_time,
            window.duration_minutes,
            window.break_start,
            window.break_end,
        )

    availability = find_availability(db, provider_id, on_date)
    if availability is None:
        availability = Availability(provider_id=provider_id, date=on_date)
        db.add(availability)

    availability.is_available = is_available
    availability.timezone = timezone
    availability.break_start = window.break_start
    availability.break_end = window.break_end

    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('Availability for this date was changed concurrently. Try again.') from exc

    # Only rows still free at delete time go; a concurrent claim wins.
    db.execute(
        AvailabilitySlot.__table__.delete().where(
            AvailabilitySlot.availability_id == availability.id,
            AvailabilitySlot.is_booked.is_(False),
        )
    )
    db.expire(availability, ['slots'])

    booked = [
        SlotWindow(slot.start_time, slot.end_time)
        for slot in db.query(AvailabilitySlot).filter(
            AvailabilitySlot.availability_id == availability.id,
            AvailabilitySlot.is_booked.is_(True),
        )
    ]
    booked_set = set(booked)

    for slot_window in merge_with_booked(generated, booked):
        if slot_window in booked_set:
            continue
        db.add(
            AvailabilitySlot(
                availability_id=availability.id,
                start_time=slot_window.start_time,
                end_time=slot_window.end_time,
                is_booked=False,
            )
        )

    db.commit()
    db.refresh(availability)

    if booked:
        logger.info(
            'Kept %d booked slot(s) while updating availability %s for provider %s on %s',
            len(booked),
            availability.id,
            provider_id,
            on_date,
        )

    return availability


def claim_slot(db: Session, slot_id: int, appointment_id: int) -> bool:
    """Mark the slot booked for ``appointment_id`` if, and only if, it is free."""
    result = db.execute(
        update(AvailabilitySlot)
        .where(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.is_booked.is_(False),
        )
        .values(is_booked=True, appointment_id=appointment_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_slot(db: Session, appointment: Appointment) -> bool:
    """Free the slot held by ``appointment``. Returns False when none matches."""
    availability_ids = select(Availability.id).where(
        Availability.provider_id == appointment.provider_id,
        Availability.date == appointment.date,
    )
    result = db.execute(
        update(AvailabilitySlot)
        .where(
            AvailabilitySlot.availability_id.in_(availability_ids),
            AvailabilitySlot.start_time == appointment.start_time,
            AvailabilitySlot.end_time == appointment.end_time,
            AvailabilitySlot.appointment_id == appointment.id,
        )
        .values(is_booked=False, appointment_id=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
