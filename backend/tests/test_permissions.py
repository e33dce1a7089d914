import pytest

from core.errors import AuthenticationError
from core.models import Role
from core.permissions import (
    Caller,
    can_access_consultation,
    can_create_consultation,
    can_end_consultation,
    can_modify_appointment,
    can_submit_feedback,
)

APPOINTMENT = {"patient_id": "p1", "admin_id": "d1"}
CONSULTATION = {"patient_id": "p1", "practitioner_id": "d1"}


def test_caller_from_user():
    caller = Caller.from_user({"_id": "u1", "role": "staff"})
    assert caller.role is Role.STAFF
    assert caller.is_staff and not caller.is_admin


def test_unknown_role_is_rejected():
    with pytest.raises(AuthenticationError):
        Caller.from_user({"_id": "u1", "role": "superuser"})


def test_appointment_access():
    assert can_modify_appointment(Caller("p1", Role.PATIENT), APPOINTMENT)
    assert not can_modify_appointment(Caller("p2", Role.PATIENT), APPOINTMENT)
    assert can_modify_appointment(Caller("s1", Role.STAFF), APPOINTMENT)
    assert can_modify_appointment(Caller("a1", Role.ADMIN), APPOINTMENT)


def test_consultation_creation():
    assert can_create_consultation(Caller("p1", Role.PATIENT), APPOINTMENT)
    assert can_create_consultation(Caller("d1", Role.ADMIN), APPOINTMENT)
    assert can_create_consultation(Caller("a9", Role.ADMIN), APPOINTMENT)
    assert not can_create_consultation(Caller("s1", Role.STAFF), APPOINTMENT)


def test_consultation_predicates():
    patient = Caller("p1", Role.PATIENT)
    practitioner = Caller("d1", Role.ADMIN)
    other_admin = Caller("a9", Role.ADMIN)
    outsider = Caller("p2", Role.PATIENT)

    assert can_access_consultation(other_admin, CONSULTATION)
    assert not can_access_consultation(outsider, CONSULTATION)

    assert can_end_consultation(practitioner, CONSULTATION)
    assert can_end_consultation(other_admin, CONSULTATION)
    assert not can_end_consultation(patient, CONSULTATION)

    assert can_submit_feedback(patient, CONSULTATION)
    assert can_submit_feedback(practitioner, CONSULTATION)
    assert not can_submit_feedback(other_admin, CONSULTATION)
