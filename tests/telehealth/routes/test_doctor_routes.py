import pytest
from fastapi import HTTPException

from telehealth.models.user import DOCTOR_ROLE, User
from telehealth.routes.doctor_routes import get_doctor, list_doctors


def _add_doctor(db, email: str, full_name: str, fee: int | None) -> User:
    user = User(email=email, hashed_password='not-a-real-hash', role=DOCTOR_ROLE, full_name=full_name, consultation_fee=fee)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_list_doctors_returns_bookable_doctors_only(db, doctor, patient) -> None:
    _add_doctor(db, 'unpriced@example.com', 'Dr. Iyer', fee=None)

    doctors = list_doctors(search=None, db=db)

    assert [(item.id, item.full_name, item.consultation_fee) for item in doctors] == [(doctor.id, 'Dr. Rao', 500)]


def test_list_doctors_filters_by_name_or_email(db, doctor) -> None:
    menon = _add_doctor(db, 'menon@clinic.example.com', 'Dr. Menon', fee=800)

    assert [item.id for item in list_doctors(search='menon', db=db)] == [menon.id]
    assert [item.id for item in list_doctors(search='CLINIC', db=db)] == [menon.id]
    assert list_doctors(search='nobody', db=db) == []
    assert len(list_doctors(search='  ', db=db)) == 2


def test_get_doctor_returns_fee(db, doctor) -> None:
    result = get_doctor(doctor_id=doctor.id, db=db)

    assert result.id == doctor.id
    assert result.consultation_fee == 500


def test_get_doctor_rejects_non_doctor(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_doctor(doctor_id=patient.id, db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_list_doctors_over_http(client, doctor) -> None:
    response = client.get('/doctors', params={'search': 'rao'})

    assert response.status_code == 200
    assert response.json() == [
        {'id': doctor.id, 'full_name': 'Dr. Rao', 'email': 'doctor@example.com', 'consultation_fee': 500},
    ]
