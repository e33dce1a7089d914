"""
Tests for core/slots.py

Slot generation from the working-hours template, exclusion of booked and past
slots, and the error cases of the slot query.
"""

from datetime import date, datetime

import pytest

from core.errors import ValidationError
from core.permissions import Caller
from core.slots import WorkingHours, compute_available_slots
from core.utils import parse_date

DAY = date(2025, 6, 10)


def _hours(slots):
    return [slot.start_time.hour for slot in slots]


def test_template_has_eight_hourly_slots():
    slots = WorkingHours().candidate_slots(DAY)

    assert len(slots) == 8
    assert slots[0].start_time == datetime(2025, 6, 10, 9, 0)
    assert slots[-1].end_time == datetime(2025, 6, 10, 17, 0)
    assert all((s.end_time - s.start_time).seconds == 3600 for s in slots)


def test_template_respects_custom_hours():
    slots = WorkingHours(start_hour=8, end_hour=12, slot_minutes=30).candidate_slots(DAY)
    assert len(slots) == 8
    assert slots[1].start_time == datetime(2025, 6, 10, 8, 30)


def test_partial_overlap_excludes_slot():
    booked = [{"start_time": datetime(2025, 6, 10, 10, 30), "end_time": datetime(2025, 6, 10, 11, 15)}]
    slots = compute_available_slots(DAY, booked, now=datetime(2025, 6, 10, 7, 0))

    assert 10 not in _hours(slots)
    assert 11 not in _hours(slots)
    assert len(slots) == 6


def test_touching_boundaries_do_not_overlap():
    booked = [{"start_time": datetime(2025, 6, 10, 11, 0), "end_time": datetime(2025, 6, 10, 12, 0)}]
    slots = compute_available_slots(DAY, booked, now=datetime(2025, 6, 10, 7, 0))

    assert _hours(slots) == [9, 10, 12, 13, 14, 15, 16]


def test_slots_must_start_strictly_after_now():
    slots = compute_available_slots(DAY, [], now=datetime(2025, 6, 10, 12, 0))
    assert _hours(slots) == [13, 14, 15, 16]


async def test_empty_day_returns_all_slots(slot_service, provider):
    slots = await slot_service.get_available_slots("2025-06-10", str(provider["_id"]))

    assert _hours(slots) == [9, 10, 11, 12, 13, 14, 15, 16]


async def test_booked_slot_is_excluded(slot_service, provider, book):
    await book(10)

    slots = await slot_service.get_available_slots(DAY, str(provider["_id"]))

    assert len(slots) == 7
    assert 10 not in _hours(slots)


async def test_other_provider_bookings_do_not_block(slot_service, provider, second_provider, book):
    await book(10, provider_id=str(second_provider["_id"]))

    slots = await slot_service.get_available_slots(DAY, str(provider["_id"]))

    assert len(slots) == 8


async def test_cancelled_appointment_frees_slot(
    slot_service, appointment_service, provider, patient, book
):
    appointment = await book(14)
    assert 14 not in _hours(await slot_service.get_available_slots(DAY, str(provider["_id"])))

    await appointment_service.cancel_appointment(
        str(appointment["_id"]), Caller.from_user(patient)
    )

    assert 14 in _hours(await slot_service.get_available_slots(DAY, str(provider["_id"])))


async def test_missing_date_is_rejected(slot_service, provider):
    with pytest.raises(ValidationError):
        await slot_service.get_available_slots(None, str(provider["_id"]))


async def test_unparseable_date_is_rejected(slot_service, provider):
    with pytest.raises(ValidationError):
        await slot_service.get_available_slots("not-a-date-xyz", str(provider["_id"]))


async def test_iso_date_with_trailing_junk_is_rejected(slot_service, provider):
    with pytest.raises(ValidationError):
        await slot_service.get_available_slots("2025-06-10garbage", str(provider["_id"]))


def test_parse_date_accepts_iso_dates_and_datetimes():
    assert parse_date(" 2025-06-10 ") == date(2025, 6, 10)
    assert parse_date("2025-06-10T09:30:00") == date(2025, 6, 10)
    assert parse_date("2025-06-10garbage") is None
