"""
Appointment lifecycle: booking, rescheduling and cancellation.

The no-overlap rule is enforced through schedule claims. Every non-cancelled
appointment holds its interval on both its provider's and its patient's
schedule; a claim that would overlap is refused by the database in the same
write that records it.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId

from core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.models import (
    APPOINTMENT_TRANSITIONS,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ConsultationStatus,
)
from core.permissions import (
    Caller,
    can_list_all_appointments,
    can_modify_appointment,
    can_reassign_provider,
    can_view_appointment,
)
from core.providers import resolve_provider
from core.utils import format_appointment_details, to_naive

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "No reason provided"

UPDATABLE_FIELDS = frozenset(
    {
        "appointment_type",
        "status",
        "start_time",
        "end_time",
        "reason",
        "notes",
        "is_virtual",
        "meeting_link",
        "documents",
        "admin_id",
        "cancellation_reason",
    }
)

# Optional fields a client may clear with an explicit null
CLEARABLE_FIELDS = frozenset({"notes", "meeting_link", "documents", "cancellation_reason"})


def _parse_type(value: Any) -> AppointmentType:
    try:
        return AppointmentType(value)
    except ValueError:
        raise ValidationError(f"Invalid appointment type '{value}'")


def _parse_status(value: Any) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid appointment status '{value}'")


def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("Reason for appointment is required")
    return reason.strip()


class AppointmentService:
    def __init__(self, db, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    async def _load(self, appointment_id: str) -> Dict:
        appointment = await self.db.get_appointment(appointment_id)
        if not appointment:
            raise NotFoundError("No appointment found with that ID")
        return appointment

    async def _restore(
        self,
        appointment_id: str,
        owner_ids: Iterable[str],
        previous: Dict[str, Tuple[datetime, datetime]],
    ) -> None:
        """Put each owner back on its previous interval, or drop the claim if it had none."""
        for owner_id in owner_ids:
            if owner_id in previous:
                old_start, old_end = previous[owner_id]
                await self.db.claim_interval(owner_id, appointment_id, old_start, old_end)
            else:
                await self.db.release_interval(owner_id, appointment_id)

    async def _claim(
        self,
        appointment_id: str,
        owners: Iterable[Tuple[str, str]],
        start: datetime,
        end: datetime,
        previous: Optional[Dict[str, Tuple[datetime, datetime]]] = None,
    ) -> None:
        """
        Claim [start, end) for every (label, owner_id). On the first refusal
        the claims already taken are rolled back, restoring the owner's
        previous interval when it had one.
        """
        claimed = []

        for label, owner_id in owners:
            if await self.db.claim_interval(owner_id, appointment_id, start, end):
                claimed.append(owner_id)
                continue

            await self._restore(appointment_id, claimed, previous or {})

            logger.info(
                f"[Appointments] Overlap for {label} {owner_id} "
                f"{start.isoformat()}-{end.isoformat()}"
            )
            raise ConflictError(f"Time slot is already booked for the {label}")

    async def _release(self, appointment: Dict) -> None:
        appointment_id = str(appointment["_id"])
        await self.db.release_interval(appointment["admin_id"], appointment_id)
        await self.db.release_interval(appointment["patient_id"], appointment_id)

    async def _cancel_consultation(self, appointment_id: str) -> None:
        consultation = await self.db.get_consultation_by_appointment(appointment_id)
        if consultation and consultation["status"] == ConsultationStatus.SCHEDULED.value:
            await self.db.update_consultation(
                str(consultation["_id"]),
                {"status": ConsultationStatus.CANCELLED.value},
                expected_status=ConsultationStatus.SCHEDULED.value,
            )
            logger.info(f"[Appointments] Cancelled consultation of appointment {appointment_id}")

    async def create_appointment(
        self,
        patient_id: str,
        provider_id: str,
        appointment_type: str,
        start_time: datetime,
        end_time: datetime,
        reason: str,
        is_virtual: bool = False,
        notes: Optional[str] = None,
        meeting_link: Optional[str] = None,
    ) -> Dict:
        kind = _parse_type(appointment_type)
        reason = _require_reason(reason)
        start_time = to_naive(start_time)
        end_time = to_naive(end_time)

        if start_time < self.clock():
            raise ValidationError("Cannot book appointments in the past")
        if end_time <= start_time:
            raise ValidationError("End time must be after start time")

        appointment = Appointment(
            patient_id=patient_id,
            admin_id=provider_id,
            appointment_type=kind,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
            is_virtual=bool(is_virtual),
            notes=notes,
            meeting_link=meeting_link,
        ).to_dict()
        appointment["_id"] = ObjectId()
        appointment_id = str(appointment["_id"])

        await self._claim(
            appointment_id,
            [("provider", provider_id), ("patient", patient_id)],
            start_time,
            end_time,
        )

        try:
            await self.db.create_appointment(appointment)
        except Exception:
            await self._release(appointment)
            raise

        logger.info(
            f"[Appointments] Booked {appointment_id} for patient {patient_id}: "
            f"{format_appointment_details(appointment)}"
        )
        return appointment

    async def get_appointment(self, appointment_id: str, caller: Caller) -> Dict:
        appointment = await self._load(appointment_id)
        if not can_view_appointment(caller, appointment):
            raise PermissionDeniedError("You do not have access to this appointment")
        return appointment

    async def list_my_appointments(self, caller: Caller) -> List[Dict]:
        return await self.db.list_appointments(patient_id=caller.user_id)

    async def list_provider_appointments(self, caller: Caller) -> List[Dict]:
        if not caller.is_admin:
            raise PermissionDeniedError("Only providers have assigned appointments")
        return await self.db.list_appointments(admin_id=caller.user_id)

    async def list_all_appointments(self, caller: Caller) -> List[Dict]:
        if not can_list_all_appointments(caller):
            raise PermissionDeniedError("You do not have permission to view all appointments")
        return await self.db.list_appointments()

    async def update_appointment(
        self, appointment_id: str, patch: Dict[str, Any], caller: Caller
    ) -> Dict:
        appointment = await self._load(appointment_id)
        if not can_modify_appointment(caller, appointment):
            raise PermissionDeniedError("You do not have permission to update this appointment")

        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        cleared = {key for key, value in patch.items() if value is None}
        if cleared - CLEARABLE_FIELDS:
            raise ValidationError(
                f"Fields cannot be cleared: {', '.join(sorted(cleared - CLEARABLE_FIELDS))}"
            )

        updates = dict(patch)
        if "documents" in cleared:
            updates["documents"] = []

        current = AppointmentStatus(appointment["status"])
        now = self.clock()

        status = current
        if "status" in updates:
            status = _parse_status(updates["status"])
            if status != current and status not in APPOINTMENT_TRANSITIONS.get(current, ()):
                raise InvalidTransitionError(
                    f"Cannot change appointment status from {current.value} to {status.value}"
                )
            updates["status"] = status.value

        if "appointment_type" in updates:
            updates["appointment_type"] = _parse_type(updates["appointment_type"]).value
        if "reason" in updates:
            updates["reason"] = _require_reason(updates["reason"])

        admin_id = appointment["admin_id"]
        if "admin_id" in updates and updates["admin_id"] != admin_id:
            if not can_reassign_provider(caller):
                raise PermissionDeniedError("Only staff can reassign the provider")
            provider = await resolve_provider(self.db, updates["admin_id"])
            admin_id = updates["admin_id"] = str(provider["_id"])

        start = to_naive(updates.get("start_time", appointment["start_time"]))
        end = to_naive(updates.get("end_time", appointment["end_time"]))
        times_changed = start != appointment["start_time"] or end != appointment["end_time"]
        schedule_changed = times_changed or admin_id != appointment["admin_id"]

        if schedule_changed and current.is_terminal:
            raise InvalidTransitionError(f"Cannot reschedule a {current.value} appointment")
        if end <= start:
            raise ValidationError("End time must be after start time")
        if times_changed and start < now:
            raise ValidationError("Cannot move appointments into the past")
        if "start_time" in updates:
            updates["start_time"] = start
        if "end_time" in updates:
            updates["end_time"] = end

        cancelling = (
            status is AppointmentStatus.CANCELLED and current is not AppointmentStatus.CANCELLED
        )
        owners = [admin_id, appointment["patient_id"]]
        old_interval = (appointment["start_time"], appointment["end_time"])
        previous = {
            appointment["admin_id"]: old_interval,
            appointment["patient_id"]: old_interval,
        }

        if cancelling:
            updates["cancelled_at"] = now
            updates["cancellation_reason"] = (
                updates.get("cancellation_reason") or DEFAULT_CANCELLATION_REASON
            )
        elif schedule_changed:
            await self._claim(
                appointment_id,
                [("provider", admin_id), ("patient", appointment["patient_id"])],
                start,
                end,
                previous=previous,
            )

        try:
            updated = await self.db.update_appointment(appointment_id, updates)
        except Exception:
            if schedule_changed and not cancelling:
                await self._restore(appointment_id, owners, previous)
            raise

        # Claims are dropped only once the stored appointment no longer needs them
        if cancelling:
            await self._release(appointment)
            await self._cancel_consultation(appointment_id)
        elif admin_id != appointment["admin_id"]:
            await self.db.release_interval(appointment["admin_id"], appointment_id)

        logger.info(f"[Appointments] Updated {appointment_id} by {caller.user_id}: {sorted(patch)}")
        return updated

    async def cancel_appointment(
        self, appointment_id: str, caller: Caller, reason: Optional[str] = None
    ) -> Dict:
        appointment = await self._load(appointment_id)
        if not can_modify_appointment(caller, appointment):
            raise PermissionDeniedError("You do not have permission to cancel this appointment")

        current = AppointmentStatus(appointment["status"])
        if AppointmentStatus.CANCELLED not in APPOINTMENT_TRANSITIONS.get(current, ()):
            raise InvalidTransitionError(f"Appointment is already {current.value}")

        updated = await self.db.update_appointment(
            appointment_id,
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancelled_at": self.clock(),
                "cancellation_reason": (reason or "").strip() or DEFAULT_CANCELLATION_REASON,
            },
        )
        await self._release(appointment)
        await self._cancel_consultation(appointment_id)

        logger.info(f"[Appointments] Cancelled {appointment_id} by {caller.user_id}")
        return updated
