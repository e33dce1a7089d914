import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Dict, Any

import dateparser
from bson import ObjectId

logger = logging.getLogger(__name__)

ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_date(text: Optional[str]) -> Optional[date]:
    """
    Parse a calendar date from an ISO string or natural language
    ("tomorrow", "next monday"). Returns None when nothing usable is found.
    """
    if not text:
        return None

    text = text.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    if ISO_PREFIX.match(text):
        # Starts like an ISO date but is not one
        logger.debug(f"Could not parse date from '{text}'")
        return None

    parsed = dateparser.parse(
        text,
        settings={
            "PREFER_DATES_FROM": "future",
            "RETURN_AS_TIMEZONE_AWARE": False,
        },
    )
    if parsed:
        return parsed.date()

    logger.debug(f"Could not parse date from '{text}'")
    return None


def to_naive(value: datetime) -> datetime:
    """Datetimes are stored naive, in clinic-local time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open [midnight, next midnight) window for a calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def minutes_between(start: datetime, end: datetime) -> int:
    return round((end - start).total_seconds() / 60)


def generate_room_id(consultation_id: ObjectId, created_at: datetime) -> str:
    millis = int(created_at.timestamp() * 1000)
    return f"consultation_{consultation_id}_{millis}"


def serialize_document(document: Any) -> Any:
    """Make a Mongo document JSON friendly (ObjectId -> str, datetime -> ISO)."""
    if isinstance(document, dict):
        return {key: serialize_document(value) for key, value in document.items()}
    if isinstance(document, list):
        return [serialize_document(item) for item in document]
    if isinstance(document, ObjectId):
        return str(document)
    if isinstance(document, datetime):
        return document.isoformat()
    return document


def serialize_appointment(appointment: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_document(appointment)
    data["duration"] = minutes_between(appointment["start_time"], appointment["end_time"])
    return data


def serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_document(user)
    data.pop("password_hash", None)
    return data


def format_appointment_details(appointment: Dict[str, Any]) -> str:
    """Format appointment details for display"""
    start = appointment.get("start_time")
    if isinstance(start, datetime):
        formatted_date = start.strftime("%A, %B %d, %Y at %I:%M %p")
    else:
        formatted_date = "Date/time not available"

    kind = appointment.get("appointment_type", "consultation")
    status = appointment.get("status", "scheduled").title()

    return f"{formatted_date} - {kind} ({status})"
