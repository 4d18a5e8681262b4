from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.auth import jwt_handler
from telehealth.core.errors import AuthenticationError, PermissionDeniedError, storage_unavailable
from telehealth.database import get_db
from telehealth.models.user import DOCTOR_ROLE, PATIENT_ROLE, User

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except Exception as exc:
        raise AuthenticationError("Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise AuthenticationError("Invalid token subject")

    try:
        user = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError as exc:
        raise storage_unavailable() from exc
    if user is None:
        raise AuthenticationError("User not found")
    return user


def require_role(*allowed_roles: str):
    def _role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise PermissionDeniedError("Access forbidden: insufficient role")
        return current_user
    return _role_checker


require_doctor = require_role(DOCTOR_ROLE)
require_patient = require_role(PATIENT_ROLE)
