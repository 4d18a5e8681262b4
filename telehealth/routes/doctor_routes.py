from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.core.errors import storage_unavailable
from telehealth.database import ensure_schema, get_db
from telehealth.models.user import DOCTOR_ROLE, User
from telehealth.services.booking import get_provider

router = APIRouter(tags=['doctors'])


class DoctorResponse(BaseModel):
    id: int
    full_name: str | None = None
    email: str
    consultation_fee: int | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    search: str | None = Query(default=None, max_length=100),
    db: Session = Depends(get_db),
):
    """Doctors that can be booked, i.e. those with a consultation fee set."""
    ensure_database_ready()

    try:
        query = db.query(User).filter(
            User.role == DOCTOR_ROLE,
            User.consultation_fee > 0,
        )

        term = (search or '').strip()
        if term:
            pattern = f'%{term}%'
            query = query.filter(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))

        return query.order_by(User.full_name, User.id).all()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return get_provider(db, doctor_id)
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc
