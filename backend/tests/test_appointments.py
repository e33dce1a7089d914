"""
Tests for core/appointments.py

Booking validation, the no-overlap rule for providers and patients,
rescheduling, cancellation and the ownership checks.
"""

from datetime import datetime, timedelta

import pytest

from core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.permissions import Caller


def _overlaps(a, b):
    return a["start_time"] < b["end_time"] and b["start_time"] < a["end_time"]


async def test_create_persists_scheduled_appointment(db, book, provider, patient):
    appointment = await book(14, is_virtual=True)

    stored = await db.get_appointment(str(appointment["_id"]))
    assert stored["status"] == "scheduled"
    assert stored["admin_id"] == str(provider["_id"])
    assert stored["patient_id"] == str(patient["_id"])
    assert stored["is_virtual"] is True


async def test_second_booking_of_same_slot_conflicts(book, other_patient):
    await book(14)

    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))


async def test_partial_overlap_conflicts(book, other_patient):
    await book(14)

    with pytest.raises(ConflictError):
        await book(13, minutes=90, patient_id=str(other_patient["_id"]))


async def test_adjacent_bookings_are_allowed(book, other_patient):
    await book(14)
    await book(15, patient_id=str(other_patient["_id"]))


async def test_patient_cannot_double_book_with_two_providers(book, second_provider):
    await book(14)

    with pytest.raises(ConflictError) as exc:
        await book(14, provider_id=str(second_provider["_id"]))

    assert "patient" in exc.value.message


async def test_refused_patient_claim_releases_provider_claim(
    db, book, second_provider, other_patient
):
    await book(14)
    with pytest.raises(ConflictError):
        await book(14, provider_id=str(second_provider["_id"]))

    # Second provider's 14:00 is still free for somebody else
    await book(14, provider_id=str(second_provider["_id"]), patient_id=str(other_patient["_id"]))


async def test_booking_in_the_past_is_rejected(book, clock):
    clock.advance(hours=6)  # 14:00

    with pytest.raises(ValidationError):
        await book(9)


async def test_end_must_be_after_start(book):
    with pytest.raises(ValidationError):
        await book(14, minutes=0)


async def test_unknown_type_and_blank_reason_are_rejected(book):
    with pytest.raises(ValidationError):
        await book(14, appointment_type="massage")
    with pytest.raises(ValidationError):
        await book(14, reason="   ")


async def test_no_two_provider_appointments_overlap(db, book, other_patient):
    patients = [None, str(other_patient["_id"])]
    for hour, minutes in [(9, 60), (9, 30), (10, 120), (11, 60), (12, 45), (12, 60), (13, 60)]:
        for patient_id in patients:
            try:
                await book(hour, minutes=minutes, patient_id=patient_id)
            except ConflictError:
                pass

    active = [a for a in db.appointments.values() if a["status"] != "cancelled"]
    for i, a in enumerate(active):
        for b in active[i + 1 :]:
            assert not _overlaps(a, b)


async def test_cancel_stamps_and_frees_interval(
    db, appointment_service, book, patient, other_patient, clock
):
    appointment = await book(14)

    cancelled = await appointment_service.cancel_appointment(
        str(appointment["_id"]), Caller.from_user(patient)
    )

    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_at"] == clock.now
    assert cancelled["cancellation_reason"] == "No reason provided"
    await book(14, patient_id=str(other_patient["_id"]))


async def test_cancel_twice_is_rejected(appointment_service, book, patient):
    appointment = await book(14)
    caller = Caller.from_user(patient)
    await appointment_service.cancel_appointment(str(appointment["_id"]), caller, "Sick")

    with pytest.raises(InvalidTransitionError):
        await appointment_service.cancel_appointment(str(appointment["_id"]), caller)


async def test_other_patient_cannot_view_or_cancel(appointment_service, book, other_patient):
    appointment = await book(14)
    outsider = Caller.from_user(other_patient)

    with pytest.raises(PermissionDeniedError):
        await appointment_service.get_appointment(str(appointment["_id"]), outsider)
    with pytest.raises(PermissionDeniedError):
        await appointment_service.cancel_appointment(str(appointment["_id"]), outsider)


async def test_staff_can_cancel_any_appointment(appointment_service, book, staff):
    appointment = await book(14)

    cancelled = await appointment_service.cancel_appointment(
        str(appointment["_id"]), Caller.from_user(staff), "Provider unavailable"
    )

    assert cancelled["cancellation_reason"] == "Provider unavailable"


async def test_unknown_appointment_is_not_found(appointment_service, patient):
    with pytest.raises(NotFoundError):
        await appointment_service.get_appointment("not-an-id", Caller.from_user(patient))


async def test_reschedule_into_free_window(appointment_service, book, patient, other_patient):
    appointment = await book(14)

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]),
        {
            "start_time": datetime(2025, 6, 10, 16, 0),
            "end_time": datetime(2025, 6, 10, 17, 0),
        },
        Caller.from_user(patient),
    )

    assert updated["start_time"] == datetime(2025, 6, 10, 16, 0)
    # old window is free again
    await book(14, patient_id=str(other_patient["_id"]))


async def test_reschedule_onto_booked_window_keeps_original(
    db, appointment_service, book, patient, other_patient
):
    first = await book(14)
    await book(15, patient_id=str(other_patient["_id"]))

    with pytest.raises(ConflictError):
        await appointment_service.update_appointment(
            str(first["_id"]),
            {"start_time": datetime(2025, 6, 10, 15, 0), "end_time": datetime(2025, 6, 10, 16, 0)},
            Caller.from_user(patient),
        )

    stored = await db.get_appointment(str(first["_id"]))
    assert stored["start_time"] == datetime(2025, 6, 10, 14, 0)
    # 14:00 is still held by the first appointment
    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))


async def test_update_can_shrink_own_window(appointment_service, book, patient):
    appointment = await book(14, minutes=120)

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]),
        {"end_time": datetime(2025, 6, 10, 15, 0)},
        Caller.from_user(patient),
    )

    assert updated["end_time"] == datetime(2025, 6, 10, 15, 0)


async def test_update_rejects_end_before_start(appointment_service, book, patient):
    appointment = await book(14)

    with pytest.raises(ValidationError):
        await appointment_service.update_appointment(
            str(appointment["_id"]),
            {"end_time": datetime(2025, 6, 10, 13, 0)},
            Caller.from_user(patient),
        )


async def test_status_update_to_cancelled_releases_interval(
    appointment_service, book, staff, other_patient
):
    appointment = await book(14)

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]), {"status": "cancelled"}, Caller.from_user(staff)
    )

    assert updated["status"] == "cancelled"
    assert updated["cancelled_at"] is not None
    await book(14, patient_id=str(other_patient["_id"]))


async def test_terminal_status_cannot_change(appointment_service, book, staff):
    appointment = await book(14)
    caller = Caller.from_user(staff)
    await appointment_service.update_appointment(
        str(appointment["_id"]), {"status": "completed"}, caller
    )

    with pytest.raises(InvalidTransitionError):
        await appointment_service.update_appointment(
            str(appointment["_id"]), {"status": "scheduled"}, caller
        )
    with pytest.raises(InvalidTransitionError):
        await appointment_service.update_appointment(
            str(appointment["_id"]),
            {"start_time": datetime(2025, 6, 10, 16, 0), "end_time": datetime(2025, 6, 10, 17, 0)},
            caller,
        )


async def test_notes_can_be_edited_after_completion(appointment_service, book, staff):
    appointment = await book(14)
    caller = Caller.from_user(staff)
    await appointment_service.update_appointment(
        str(appointment["_id"]), {"status": "completed"}, caller
    )

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]), {"notes": "Fitted new brace"}, caller
    )

    assert updated["notes"] == "Fitted new brace"


async def test_patient_cannot_reassign_provider(appointment_service, book, patient, second_provider):
    appointment = await book(14)

    with pytest.raises(PermissionDeniedError):
        await appointment_service.update_appointment(
            str(appointment["_id"]),
            {"admin_id": str(second_provider["_id"])},
            Caller.from_user(patient),
        )


async def test_staff_reassigns_provider_and_moves_claim(
    appointment_service, book, staff, provider, second_provider, other_patient
):
    appointment = await book(14)

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]),
        {"admin_id": str(second_provider["_id"])},
        Caller.from_user(staff),
    )

    assert updated["admin_id"] == str(second_provider["_id"])
    # first provider is free at 14:00 again
    await book(14, patient_id=str(other_patient["_id"]))


async def test_unknown_fields_are_rejected(appointment_service, book, patient):
    appointment = await book(14)

    with pytest.raises(ValidationError):
        await appointment_service.update_appointment(
            str(appointment["_id"]), {"patient_id": "someone-else"}, Caller.from_user(patient)
        )


async def test_listing_is_scoped_by_role(appointment_service, book, patient, other_patient, provider, staff):
    await book(9)
    await book(10, patient_id=str(other_patient["_id"]))

    mine = await appointment_service.list_my_appointments(Caller.from_user(patient))
    assigned = await appointment_service.list_provider_appointments(Caller.from_user(provider))
    everything = await appointment_service.list_all_appointments(Caller.from_user(staff))

    assert len(mine) == 1
    assert len(assigned) == 2
    assert len(everything) == 2
    with pytest.raises(PermissionDeniedError):
        await appointment_service.list_all_appointments(Caller.from_user(patient))


@pytest.fixture
def failing_writes(db, monkeypatch):
    """Make the appointment write fail after the schedule claims are taken."""

    async def update_appointment(appointment_id, updates):
        raise RuntimeError("write failed")

    monkeypatch.setattr(db, "update_appointment", update_appointment)


async def test_failed_cancel_write_keeps_slot_claimed(
    db, appointment_service, book, patient, other_patient, failing_writes
):
    appointment = await book(14)

    with pytest.raises(RuntimeError):
        await appointment_service.cancel_appointment(
            str(appointment["_id"]), Caller.from_user(patient)
        )

    stored = await db.get_appointment(str(appointment["_id"]))
    assert stored["status"] == "scheduled"
    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))


async def test_failed_status_cancel_keeps_slot_claimed(
    appointment_service, book, staff, other_patient, failing_writes
):
    appointment = await book(14)

    with pytest.raises(RuntimeError):
        await appointment_service.update_appointment(
            str(appointment["_id"]), {"status": "cancelled"}, Caller.from_user(staff)
        )

    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))


async def test_failed_reschedule_write_restores_claims(
    appointment_service, book, patient, other_patient, failing_writes
):
    appointment = await book(14)

    with pytest.raises(RuntimeError):
        await appointment_service.update_appointment(
            str(appointment["_id"]),
            {"start_time": datetime(2025, 6, 10, 16, 0), "end_time": datetime(2025, 6, 10, 17, 0)},
            Caller.from_user(patient),
        )

    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))
    await book(16, patient_id=str(other_patient["_id"]))


async def test_failed_reassign_write_keeps_original_provider(
    appointment_service, book, staff, second_provider, other_patient, failing_writes
):
    appointment = await book(14)

    with pytest.raises(RuntimeError):
        await appointment_service.update_appointment(
            str(appointment["_id"]),
            {"admin_id": str(second_provider["_id"])},
            Caller.from_user(staff),
        )

    with pytest.raises(ConflictError):
        await book(14, patient_id=str(other_patient["_id"]))
    await book(14, provider_id=str(second_provider["_id"]), patient_id=str(other_patient["_id"]))


async def test_optional_fields_can_be_cleared(appointment_service, book, patient):
    appointment = await book(14, notes="Bring x-rays", meeting_link="https://meet.example/abc")

    updated = await appointment_service.update_appointment(
        str(appointment["_id"]), {"notes": None, "meeting_link": None}, Caller.from_user(patient)
    )

    assert updated["notes"] is None
    assert updated["meeting_link"] is None


async def test_required_fields_cannot_be_cleared(appointment_service, book, patient):
    appointment = await book(14)

    with pytest.raises(ValidationError):
        await appointment_service.update_appointment(
            str(appointment["_id"]), {"start_time": None}, Caller.from_user(patient)
        )
