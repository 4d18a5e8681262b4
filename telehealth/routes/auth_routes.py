import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth import jwt_handler
from telehealth.auth.dependencies import get_current_user
from telehealth.auth.passwords import hash_password, verify_password
from telehealth.core.errors import AuthenticationError, BadRequestError, ConflictError, storage_unavailable
from telehealth.database import get_db
from telehealth.models.user import DOCTOR_ROLE, PATIENT_ROLE, User

router = APIRouter(tags=["auth"])

logger = logging.getLogger(__name__)

SIGNUP_ROLES = {PATIENT_ROLE, DOCTOR_ROLE}
MIN_PASSWORD_LENGTH = 8


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise ValueError("A valid email address is required.")
    return normalized


class SignupRequest(BaseModel):
    email: str
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    role: str = PATIENT_ROLE
    full_name: str | None = None
    consultation_fee: int | None = Field(default=None, gt=0)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SIGNUP_ROLES:
            raise ValueError("Role must be patient or doctor.")
        return normalized

    @model_validator(mode="after")
    def require_fee_for_doctors(self) -> "SignupRequest":
        if self.role == DOCTOR_ROLE and self.consultation_fee is None:
            raise ValueError("Doctors must set a consultation fee.")
        return self


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


class MeResponse(BaseModel):
    id: int
    email: str
    role: str
    full_name: str | None = None
    consultation_fee: int | None = None

    class Config:
        from_attributes = True


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(data: SignupRequest, db: Session = Depends(get_db)):
    user = User(
        email=data.email,
        hashed_password=hash_password(data.password),
        role=data.role,
        full_name=data.full_name,
        consultation_fee=data.consultation_fee if data.role == DOCTOR_ROLE else None,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("An account with this email already exists.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise storage_unavailable() from exc

    logger.info("Registered %s account %s", user.role, user.id)
    token = jwt_handler.create_access_token(subject=user.email, role=user.role)
    return TokenResponse(access_token=token, role=user.role)


@router.post("/login", response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    if not data.email or not data.password:
        raise BadRequestError("Email and password are required.")

    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc

    if user is None or not verify_password(data.password, user.hashed_password):
        raise AuthenticationError("Invalid email or password.")

    token = jwt_handler.create_access_token(subject=user.email, role=user.role)
    return TokenResponse(access_token=token, role=user.role)


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
