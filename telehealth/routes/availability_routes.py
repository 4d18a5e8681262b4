import logging
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import require_doctor
from telehealth.core import config
from telehealth.core.errors import BadRequestError, storage_unavailable
from telehealth.database import ensure_schema, get_db
from telehealth.models.user import User
from telehealth.services.availability_store import WorkingWindow, list_availability, set_availability
from telehealth.services.slot_generator import parse_clock

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MAX_SLOT_DURATION_MINUTES = 240


class SetAvailabilityRequest(BaseModel):
    date: date
    is_available: bool = True
    start_time: time | None = None
    end_time: time | None = None
    slot_duration: int | None = Field(default=None, gt=0, le=MAX_SLOT_DURATION_MINUTES)
    break_start: time | None = None
    break_end: time | None = None
    include_break: bool = True
    timezone: str | None = None

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError('Unknown timezone.') from exc

        return normalized

    def to_window(self) -> WorkingWindow:
        start_time = self.start_time or parse_clock(config.DEFAULT_DAY_START)
        end_time = self.end_time or parse_clock(config.DEFAULT_DAY_END)

        break_start = None
        break_end = None
        if self.include_break:
            break_start = self.break_start or parse_clock(config.DEFAULT_BREAK_START)
            break_end = self.break_end or parse_clock(config.DEFAULT_BREAK_END)

            # The default break only applies when it fits the working hours.
            break_given = self.break_start is not None or self.break_end is not None
            if not break_given and (break_start < start_time or break_end > end_time):
                break_start = None
                break_end = None

        return WorkingWindow(
            start_time=start_time,
            end_time=end_time,
            duration_minutes=self.slot_duration or config.DEFAULT_SLOT_MINUTES,
            break_start=break_start,
            break_end=break_end,
        )


class SlotResponse(BaseModel):
    id: int
    start_time: time
    end_time: time
    is_booked: bool
    appointment_id: int | None = None

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    id: int
    provider_id: int
    date: date
    timezone: str
    is_available: bool
    break_start: time | None = None
    break_end: time | None = None
    slots: list[SlotResponse]
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class WorkingDefaultsResponse(BaseModel):
    start_time: time
    end_time: time
    slot_duration: int
    break_start: time
    break_end: time
    timezone: str


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.get('', response_model=list[AvailabilityResponse])
def get_availability(
    provider_id: int | None = Query(default=None),
    on_date: date | None = Query(default=None, alias='date'),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if on_date is None and (start_date is None) != (end_date is None):
        raise BadRequestError('Both start_date and end_date are required for a range.')

    if on_date is None and start_date is not None and start_date > end_date:
        raise BadRequestError('start_date must be on or before end_date.')

    ensure_database_ready()

    try:
        return list_availability(
            db,
            provider_id=provider_id,
            on_date=on_date,
            start_date=start_date,
            end_date=end_date,
        )
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.post('', response_model=AvailabilityResponse, status_code=status.HTTP_200_OK)
def update_availability(
    data: SetAvailabilityRequest,
    current_user: User = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        availability = set_availability(
            db,
            provider_id=current_user.id,
            on_date=data.date,
            is_available=data.is_available,
            window=data.to_window(),
            timezone=data.timezone or config.DEFAULT_TIMEZONE,
        )
    except ValueError as exc:
        db.rollback()
        raise BadRequestError(str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Saving availability for provider %s on %s failed', current_user.id, data.date)
        raise storage_unavailable() from exc

    return availability


@router.get('/defaults', response_model=WorkingDefaultsResponse)
def get_working_defaults():
    return WorkingDefaultsResponse(
        start_time=parse_clock(config.DEFAULT_DAY_START),
        end_time=parse_clock(config.DEFAULT_DAY_END),
        slot_duration=config.DEFAULT_SLOT_MINUTES,
        break_start=parse_clock(config.DEFAULT_BREAK_START),
        break_end=parse_clock(config.DEFAULT_BREAK_END),
        timezone=config.DEFAULT_TIMEZONE,
    )
