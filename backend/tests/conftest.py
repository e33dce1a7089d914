from datetime import datetime, timedelta

import pytest

from core.appointments import AppointmentService
from core.consultations import ConsultationService
from core.slots import SlotService, WorkingHours
from tests.fakes import InMemoryDatabase


class Clock:
    """Controllable 'now' for the services."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime(2025, 6, 10, 8, 0))


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def provider(db):
    return db.add_user("admin", "provider@clinic.test")


@pytest.fixture
def second_provider(db):
    return db.add_user("admin", "second@clinic.test", created_at=datetime(2025, 2, 1))


@pytest.fixture
def patient(db):
    return db.add_user("patient", "patient@clinic.test")


@pytest.fixture
def other_patient(db):
    return db.add_user("patient", "other@clinic.test")


@pytest.fixture
def staff(db):
    return db.add_user("staff", "staff@clinic.test")


@pytest.fixture
def slot_service(db, clock):
    return SlotService(db, hours=WorkingHours(), clock=clock)


@pytest.fixture
def appointment_service(db, clock):
    return AppointmentService(db, clock=clock)


@pytest.fixture
def consultation_service(db, clock):
    return ConsultationService(db, clock=clock)


@pytest.fixture
def book(appointment_service, provider, patient):
    """Book on 2025-06-10 at the given hour (provider/patient defaults)."""

    async def _book(hour, minutes=60, patient_id=None, provider_id=None, **kwargs):
        start = datetime(2025, 6, 10, hour, 0)
        return await appointment_service.create_appointment(
            patient_id=patient_id or str(patient["_id"]),
            provider_id=provider_id or str(provider["_id"]),
            appointment_type=kwargs.pop("appointment_type", "consultation"),
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            reason=kwargs.pop("reason", "Knee pain"),
            **kwargs,
        )

    return _book
