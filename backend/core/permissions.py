"""
Role-based permission predicates.

Every service operation resolves the caller into a :class:`Caller` and asks
one of the predicates below before touching a record.
"""

from dataclasses import dataclass
from typing import Any, Dict

from core.errors import AuthenticationError
from core.models import Role


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Caller":
        try:
            role = Role(user.get("role", Role.PATIENT.value))
        except ValueError:
            raise AuthenticationError(f"Unknown role '{user.get('role')}'")
        return cls(user_id=str(user["_id"]), role=role)


# Appointments

def can_view_appointment(caller: Caller, appointment: Dict[str, Any]) -> bool:
    return caller.is_staff or appointment["patient_id"] == caller.user_id


def can_modify_appointment(caller: Caller, appointment: Dict[str, Any]) -> bool:
    return can_view_appointment(caller, appointment)


def can_reassign_provider(caller: Caller) -> bool:
    return caller.is_staff


def can_list_all_appointments(caller: Caller) -> bool:
    return caller.is_staff


def can_create_consultation(caller: Caller, appointment: Dict[str, Any]) -> bool:
    return (
        caller.is_admin
        or appointment["patient_id"] == caller.user_id
        or appointment["admin_id"] == caller.user_id
    )


# Consultations

def is_consultation_party(caller: Caller, consultation: Dict[str, Any]) -> bool:
    return caller.user_id in (consultation["patient_id"], consultation["practitioner_id"])


def can_access_consultation(caller: Caller, consultation: Dict[str, Any]) -> bool:
    """Patient, practitioner or an admin."""
    return caller.is_admin or is_consultation_party(caller, consultation)


def can_end_consultation(caller: Caller, consultation: Dict[str, Any]) -> bool:
    return caller.is_admin or consultation["practitioner_id"] == caller.user_id


def can_submit_feedback(caller: Caller, consultation: Dict[str, Any]) -> bool:
    # Only the two designated participants
    return is_consultation_party(caller, consultation)


def can_monitor_consultations(caller: Caller) -> bool:
    return caller.is_staff
