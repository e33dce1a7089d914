import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_appointment_service, get_caller, get_db, get_slot_service
from api.schemas import AppointmentCancel, AppointmentCreate, AppointmentUpdate
from core.errors import BookingError, ValidationError
from core.permissions import Caller
from core.providers import resolve_provider
from core.utils import serialize_appointment

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/appointments", tags=["appointments"])


@router.get("/available-slots")
async def get_available_slots(
    date: Optional[str] = None,
    provider: Optional[str] = None,
    caller: Caller = Depends(get_caller),
    db=Depends(get_db),
    slots=Depends(get_slot_service),
):
    """Get bookable slots for a date"""
    try:
        if not date:
            raise ValidationError("Date is required")

        provider_doc = await resolve_provider(db, provider)
        available = await slots.get_available_slots(date, str(provider_doc["_id"]))

        return {
            "date": date,
            "provider_id": str(provider_doc["_id"]),
            "available_slots": [slot.to_dict() for slot in available],
        }

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error getting available slots: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def create_appointment(
    appointment: AppointmentCreate,
    caller: Caller = Depends(get_caller),
    db=Depends(get_db),
    service=Depends(get_appointment_service),
):
    """Book an appointment for the current user"""
    try:
        provider = await resolve_provider(db, appointment.provider_id)
        created = await service.create_appointment(
            patient_id=caller.user_id,
            provider_id=str(provider["_id"]),
            appointment_type=appointment.appointment_type,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            reason=appointment.reason,
            is_virtual=appointment.is_virtual,
            notes=appointment.notes,
            meeting_link=appointment.meeting_link,
        )
        return {"appointment": serialize_appointment(created)}

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error creating appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/my-appointments")
async def get_my_appointments(
    caller: Caller = Depends(get_caller), service=Depends(get_appointment_service)
):
    appointments = await service.list_my_appointments(caller)
    return {
        "results": len(appointments),
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/admin")
async def get_admin_appointments(
    caller: Caller = Depends(get_caller), service=Depends(get_appointment_service)
):
    """Appointments assigned to the calling provider"""
    appointments = await service.list_provider_appointments(caller)
    return {
        "results": len(appointments),
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/all")
async def get_all_appointments(
    caller: Caller = Depends(get_caller), service=Depends(get_appointment_service)
):
    appointments = await service.list_all_appointments(caller)
    return {
        "results": len(appointments),
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_appointment_service),
):
    appointment = await service.get_appointment(appointment_id, caller)
    return {"appointment": serialize_appointment(appointment)}


@router.patch("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    update: AppointmentUpdate,
    caller: Caller = Depends(get_caller),
    service=Depends(get_appointment_service),
):
    """Update an appointment"""
    try:
        patch = update.model_dump(exclude_unset=True)
        updated = await service.update_appointment(appointment_id, patch, caller)
        return {"appointment": serialize_appointment(updated)}

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error updating appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    body: Optional[AppointmentCancel] = None,
    caller: Caller = Depends(get_caller),
    service=Depends(get_appointment_service),
):
    """Cancel an appointment"""
    try:
        reason = body.reason if body else None
        cancelled = await service.cancel_appointment(appointment_id, caller, reason)
        return {"appointment": serialize_appointment(cancelled)}

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error cancelling appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))
