import os
from datetime import date, time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET_KEY', 'test-jwt-secret-that-is-long-enough-for-hs256')

from telehealth.auth import jwt_handler  # noqa: E402
from telehealth.database import Base, get_db  # noqa: E402
from telehealth.main import app  # noqa: E402
from telehealth.models.user import DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402
from telehealth.services.availability_store import WorkingWindow, set_availability  # noqa: E402
from telehealth.services.payment_gateway import (  # noqa: E402
    compute_signature,
    get_payment_gateway,
    verify_payment_signature,
)

BOOKING_DATE = date(2026, 3, 10)
DEFAULT_WINDOW = WorkingWindow(
    start_time=time(9, 0),
    end_time=time(17, 0),
    duration_minutes=30,
    break_start=time(13, 0),
    break_end=time(14, 0),
)


class FakeGateway:
    """In-memory stand-in for the Razorpay client."""

    key_id = 'rzp_test_key'
    key_secret = 'test-gateway-secret'

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.refunds: list[dict] = []

    def create_order(self, amount, currency, receipt, notes):
        order_id = f'order_{len(self.orders) + 1}'
        order = {
            'id': order_id,
            'amount': amount,
            'currency': currency,
            'receipt': receipt,
            'notes': dict(notes),
            'status': 'created',
        }
        self.orders[order_id] = order
        return order

    def fetch_order(self, order_id):
        return self.orders.get(order_id, {'id': order_id, 'notes': {}})

    def refund_payment(self, payment_id, amount, notes):
        refund = {
            'id': f'rfnd_{len(self.refunds) + 1}',
            'payment_id': payment_id,
            'amount': amount,
            'notes': notes,
            'status': 'processed',
        }
        self.refunds.append(refund)
        return refund

    def verify_signature(self, order_id, payment_id, signature):
        return verify_payment_signature(self.key_secret, order_id, payment_id, signature)

    def sign(self, order_id, payment_id):
        return compute_signature(self.key_secret, order_id, payment_id)


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def skip_schema_upkeep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('telehealth.routes.availability_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('telehealth.routes.appointment_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('telehealth.routes.payment_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('telehealth.routes.doctor_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def _add_user(db, email: str, role: str, fee: int | None = None, full_name: str | None = None) -> User:
    user = User(
        email=email,
        hashed_password='not-a-real-hash',
        role=role,
        full_name=full_name,
        consultation_fee=fee,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def doctor(db) -> User:
    return _add_user(db, 'doctor@example.com', DOCTOR_ROLE, fee=500, full_name='Dr. Rao')


@pytest.fixture
def patient(db) -> User:
    return _add_user(db, 'patient@example.com', PATIENT_ROLE, full_name='Asha')


@pytest.fixture
def other_patient(db) -> User:
    return _add_user(db, 'other@example.com', PATIENT_ROLE, full_name='Ben')


@pytest.fixture
def open_day(db, doctor):
    return set_availability(
        db,
        provider_id=doctor.id,
        on_date=BOOKING_DATE,
        is_available=True,
        window=DEFAULT_WINDOW,
        timezone='Asia/Kolkata',
    )


@pytest.fixture
def client(db, gateway):
    def _override_db():
        yield db

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_header(user: User) -> dict[str, str]:
    token = jwt_handler.create_access_token(subject=user.email, role=user.role)
    return {'Authorization': f'Bearer {token}'}
