"""
Virtual consultation lifecycle.

    scheduled --start--> active --end--> completed
        |
        +--cancel--> cancelled

Status changes are written with a compare-and-set on the stored status, so of
two racing transitions only one is applied. Joining and leaving only touch the
participant list.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId

from core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.models import (
    AppointmentStatus,
    ConnectionStatus,
    Consultation,
    ConsultationStatus,
    Participant,
    ParticipantRole,
)
from core.permissions import (
    Caller,
    can_access_consultation,
    can_create_consultation,
    can_end_consultation,
    can_monitor_consultations,
    can_submit_feedback,
)
from core.utils import day_bounds, generate_room_id, minutes_between

logger = logging.getLogger(__name__)

BOOKABLE_APPOINTMENT_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.IN_PROGRESS.value,
)

OPEN_STATUSES = [ConsultationStatus.SCHEDULED.value, ConsultationStatus.ACTIVE.value]


def _participant_role(consultation: Dict, user_id: str) -> ParticipantRole:
    if user_id == consultation["patient_id"]:
        return ParticipantRole.PATIENT
    if user_id == consultation["practitioner_id"]:
        return ParticipantRole.PRACTITIONER
    return ParticipantRole.OBSERVER


def _validate_rating(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError(f"{name} must be an integer between 1 and 5")
    return value


def _clean(text: Optional[str]) -> Optional[str]:
    return text.strip() if isinstance(text, str) else text


class ConsultationService:
    def __init__(self, db, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    async def _load(self, consultation_id: str) -> Dict:
        consultation = await self.db.get_consultation(consultation_id)
        if not consultation:
            raise NotFoundError("Consultation not found")
        return consultation

    async def _load_for(self, consultation_id: str, caller: Caller, action: str) -> Dict:
        consultation = await self._load(consultation_id)
        if not can_access_consultation(caller, consultation):
            raise PermissionDeniedError(f"Not authorized to {action} this consultation")
        return consultation

    async def _transition(
        self, consultation: Dict, expected: ConsultationStatus, updates: Dict
    ) -> Dict:
        consultation_id = str(consultation["_id"])
        updated = await self.db.update_consultation(
            consultation_id, updates, expected_status=expected.value
        )
        if updated is None:
            current = await self._load(consultation_id)
            raise InvalidTransitionError(
                f"Consultation is {current['status']}, expected {expected.value}"
            )
        return updated

    async def _join(self, consultation: Dict, user_id: str, now: datetime) -> Dict:
        """Mark ``user_id`` connected, reusing their entry when they joined before."""
        consultation_id = str(consultation["_id"])
        reconnect = {
            "joined_at": now,
            "left_at": None,
            "connection_status": ConnectionStatus.CONNECTED.value,
        }
        entry = Participant(
            user_id=user_id,
            role=_participant_role(consultation, user_id),
            joined_at=now,
            connection_status=ConnectionStatus.CONNECTED,
        ).to_dict()

        # A second attempt covers an entry added by a concurrent join of the same user
        for _ in range(2):
            updated = await self.db.update_participant(
                consultation_id, user_id, reconnect, statuses=OPEN_STATUSES
            )
            if updated is None:
                updated = await self.db.add_participant(
                    consultation_id, entry, statuses=OPEN_STATUSES
                )
            if updated is not None:
                return updated

        current = await self._load(consultation_id)
        raise InvalidTransitionError(f"Cannot join a consultation that is {current['status']}")

    async def create_consultation(self, appointment_id: str, caller: Caller) -> Tuple[Dict, bool]:
        """Return (consultation, created). Repeated calls return the same record."""
        appointment = await self.db.get_appointment(appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if not can_create_consultation(caller, appointment):
            raise PermissionDeniedError(
                "Not authorized to create consultation for this appointment"
            )

        existing = await self.db.get_consultation_by_appointment(appointment_id)
        if existing:
            return existing, False

        if appointment["status"] not in BOOKABLE_APPOINTMENT_STATUSES:
            raise InvalidTransitionError(
                f"Cannot open a consultation for a {appointment['status']} appointment"
            )

        consultation_oid = ObjectId()
        created_at = self.clock()
        consultation = Consultation(
            appointment_id=appointment_id,
            patient_id=appointment["patient_id"],
            practitioner_id=appointment["admin_id"],
            room_id=generate_room_id(consultation_oid, created_at),
            start_time=appointment["start_time"],
            end_time=appointment["end_time"],
            created_at=created_at,
        ).to_dict()
        consultation["_id"] = consultation_oid

        stored = await self.db.get_or_create_consultation(consultation)
        created = stored["_id"] == consultation_oid
        if created:
            logger.info(
                f"[Consultations] Created {consultation_oid} room={stored['room_id']} "
                f"for appointment {appointment_id}"
            )
        return stored, created

    async def get_consultation(self, consultation_id: str, caller: Caller) -> Dict:
        return await self._load_for(consultation_id, caller, "access")

    async def get_consultation_by_room(self, room_id: str, caller: Caller) -> Dict:
        consultation = await self.db.get_consultation_by_room(room_id)
        if not consultation:
            raise NotFoundError("Consultation room not found")
        if not can_access_consultation(caller, consultation):
            raise PermissionDeniedError("Not authorized to access this consultation")
        return consultation

    async def start_consultation(self, consultation_id: str, caller: Caller) -> Dict:
        consultation = await self._load_for(consultation_id, caller, "start")

        status = ConsultationStatus(consultation["status"])
        if status is not ConsultationStatus.SCHEDULED:
            raise InvalidTransitionError(f"Cannot start a consultation that is {status.value}")

        now = self.clock()
        await self._transition(
            consultation,
            ConsultationStatus.SCHEDULED,
            {"status": ConsultationStatus.ACTIVE.value, "actual_start_time": now},
        )
        updated = await self._join(consultation, caller.user_id, now)
        logger.info(f"[Consultations] Started {consultation_id} by {caller.user_id}")
        return updated

    async def end_consultation(
        self,
        consultation_id: str,
        caller: Caller,
        notes: Optional[str] = None,
        patient_notes: Optional[str] = None,
        practitioner_notes: Optional[str] = None,
        follow_up_required: Optional[bool] = None,
        follow_up_notes: Optional[str] = None,
        next_appointment_suggested: Optional[datetime] = None,
    ) -> Dict:
        consultation = await self._load(consultation_id)
        if not can_end_consultation(caller, consultation):
            raise PermissionDeniedError("Only the practitioner can end the consultation")

        status = ConsultationStatus(consultation["status"])
        if status is not ConsultationStatus.ACTIVE:
            # Never-started consultations are rejected here too
            raise InvalidTransitionError(f"Cannot end a consultation that is {status.value}")

        now = self.clock()
        updates = {
            "status": ConsultationStatus.COMPLETED.value,
            "actual_end_time": now,
            "duration": max(0, minutes_between(consultation["actual_start_time"], now)),
        }
        optional = {
            "notes": _clean(notes),
            "patient_notes": _clean(patient_notes),
            "practitioner_notes": _clean(practitioner_notes),
            "follow_up_notes": _clean(follow_up_notes),
            "next_appointment_suggested": next_appointment_suggested,
        }
        updates.update({key: value for key, value in optional.items() if value})
        if follow_up_required is not None:
            updates["follow_up_required"] = follow_up_required

        await self._transition(consultation, ConsultationStatus.ACTIVE, updates)
        # No joins are accepted once completed
        updated = await self.db.disconnect_participants(consultation_id, now)
        logger.info(
            f"[Consultations] Ended {consultation_id} by {caller.user_id} "
            f"after {updates['duration']} min"
        )
        return updated

    async def cancel_consultation(self, consultation_id: str, caller: Caller) -> Dict:
        consultation = await self._load_for(consultation_id, caller, "cancel")

        status = ConsultationStatus(consultation["status"])
        if status is not ConsultationStatus.SCHEDULED:
            raise InvalidTransitionError(f"Cannot cancel a consultation that is {status.value}")

        return await self._transition(
            consultation,
            ConsultationStatus.SCHEDULED,
            {"status": ConsultationStatus.CANCELLED.value},
        )

    async def join_consultation(self, consultation_id: str, caller: Caller) -> Dict:
        consultation = await self._load_for(consultation_id, caller, "join")

        status = ConsultationStatus(consultation["status"])
        if status.is_terminal:
            raise InvalidTransitionError(f"Cannot join a consultation that is {status.value}")

        return await self._join(consultation, caller.user_id, self.clock())

    async def leave_consultation(self, consultation_id: str, caller: Caller) -> Dict:
        consultation = await self._load_for(consultation_id, caller, "leave")

        updated = await self.db.update_participant(
            consultation_id,
            caller.user_id,
            {"left_at": self.clock(), "connection_status": ConnectionStatus.DISCONNECTED.value},
        )
        # Leaving without having joined changes nothing
        return updated or consultation

    async def add_notes(
        self, consultation_id: str, caller: Caller, notes: str, note_type: str = "general"
    ) -> Dict:
        consultation = await self._load_for(consultation_id, caller, "add notes to")

        status = ConsultationStatus(consultation["status"])
        if status.is_terminal:
            raise InvalidTransitionError(f"Cannot add notes to a consultation that is {status.value}")

        if note_type == "patient" and caller.user_id == consultation["patient_id"]:
            field_name = "patient_notes"
        elif note_type == "practitioner" and caller.user_id == consultation["practitioner_id"]:
            field_name = "practitioner_notes"
        else:
            field_name = "notes"

        return await self._transition(consultation, status, {field_name: _clean(notes)})

    async def submit_feedback(
        self,
        consultation_id: str,
        caller: Caller,
        rating: int,
        feedback: Optional[str] = None,
        technical_rating: Optional[int] = None,
    ) -> Dict:
        consultation = await self._load(consultation_id)
        if not can_submit_feedback(caller, consultation):
            raise PermissionDeniedError(
                "Not authorized to submit feedback for this consultation"
            )

        rating = _validate_rating(rating, "Rating")
        if technical_rating is not None:
            technical_rating = _validate_rating(technical_rating, "Technical rating")

        side = "patient" if caller.user_id == consultation["patient_id"] else "practitioner"
        fields = {f"{side}_rating": rating, f"{side}_feedback": _clean(feedback)}
        if technical_rating is not None:
            fields["technical_rating"] = technical_rating

        updated = await self.db.set_feedback(consultation_id, side, fields)
        if updated is None:
            raise ConflictError("Feedback has already been submitted")

        logger.info(f"[Consultations] {side.title()} feedback on {consultation_id}: {rating}/5")
        return updated


    async def list_my_consultations(
        self, caller: Caller, status: Optional[str] = None, limit: int = 10, page: int = 1
    ) -> Dict[str, Any]:
        if status is not None:
            try:
                status = ConsultationStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid consultation status '{status}'")
        limit = max(1, limit)
        page = max(1, page)

        consultations = await self.db.list_user_consultations(
            caller.user_id, status=status, limit=limit, skip=(page - 1) * limit
        )
        total = await self.db.count_user_consultations(caller.user_id, status=status)

        return {
            "results": len(consultations),
            "total_pages": -(-total // limit),
            "current_page": page,
            "consultations": consultations,
        }

    async def list_active_consultations(self, caller: Caller) -> List[Dict]:
        if not can_monitor_consultations(caller):
            raise PermissionDeniedError("You do not have permission to perform this action")
        return await self.db.list_consultations_by_status(ConsultationStatus.ACTIVE.value)

    async def consultation_stats(self, caller: Caller) -> Dict[str, Any]:
        if not can_monitor_consultations(caller):
            raise PermissionDeniedError("You do not have permission to perform this action")
        since, until = day_bounds(self.clock().date())
        return await self.db.consultation_stats(since, until)
