from datetime import datetime
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    PATIENT = "patient"
    STAFF = "staff"
    ADMIN = "admin"


class AppointmentType(Enum):
    CONSULTATION = "consultation"
    FITTING = "fitting"
    FOLLOW_UP = "follow-up"
    ADJUSTMENT = "adjustment"
    EMERGENCY = "emergency"
    VIRTUAL_CONSULTATION = "virtual-consultation"


class AppointmentStatus(Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_APPOINTMENT_STATUSES


TERMINAL_APPOINTMENT_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

APPOINTMENT_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
}


class ConsultationStatus(Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ConsultationStatus.COMPLETED, ConsultationStatus.CANCELLED)


class ParticipantRole(Enum):
    PATIENT = "patient"
    PRACTITIONER = "practitioner"
    OBSERVER = "observer"


class ConnectionStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass
class User:
    email: str
    first_name: str
    last_name: str
    password_hash: str
    role: Role = Role.PATIENT
    phone: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "password_hash": self.password_hash,
            "role": self.role.value,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": self.created_at or datetime.utcnow(),
        }


@dataclass
class Appointment:
    patient_id: str
    admin_id: str
    appointment_type: AppointmentType
    start_time: datetime
    end_time: datetime
    reason: str
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    is_virtual: bool = False
    notes: Optional[str] = None
    meeting_link: Optional[str] = None
    documents: List[Dict[str, Any]] = field(default_factory=list)
    reminders: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        now = datetime.utcnow()
        return {
            "patient_id": self.patient_id,
            "admin_id": self.admin_id,
            "appointment_type": self.appointment_type.value,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "reason": self.reason,
            "notes": self.notes,
            "is_virtual": self.is_virtual,
            "meeting_link": self.meeting_link,
            "documents": self.documents,
            "reminders": self.reminders,
            "cancelled_at": None,
            "cancellation_reason": None,
            "created_at": self.created_at or now,
            "updated_at": self.updated_at or now,
        }


@dataclass
class Participant:
    user_id: str
    role: ParticipantRole
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "joined_at": self.joined_at,
            "left_at": self.left_at,
            "connection_status": self.connection_status.value,
        }


@dataclass
class Consultation:
    appointment_id: str
    patient_id: str
    practitioner_id: str
    room_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: ConsultationStatus = ConsultationStatus.SCHEDULED
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        now = datetime.utcnow()
        return {
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "practitioner_id": self.practitioner_id,
            "room_id": self.room_id,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "actual_start_time": None,
            "actual_end_time": None,
            "duration": None,
            "notes": None,
            "patient_notes": None,
            "practitioner_notes": None,
            "participants": [],
            "feedback": {
                "patient_rating": None,
                "patient_feedback": None,
                "practitioner_rating": None,
                "practitioner_feedback": None,
                "technical_rating": None,
            },
            "follow_up_required": False,
            "follow_up_notes": None,
            "next_appointment_suggested": None,
            "created_at": self.created_at or now,
            "updated_at": self.created_at or now,
        }


@dataclass
class TimeSlot:
    start_time: datetime
    end_time: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval test: touching boundaries do not overlap."""
        return self.start_time < end and self.end_time > start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }
