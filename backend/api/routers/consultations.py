import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.deps import get_caller, get_consultation_service, get_current_user
from api.schemas import (
    ConsultationEnd,
    ConsultationFeedback,
    ConsultationNotes,
    RoomTokenResponse,
)
from core.errors import BookingError
from core.permissions import Caller
from core.utils import serialize_document
from core.video import create_room_token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/consultations", tags=["consultations"])


def _consultation_response(consultation: dict) -> dict:
    return {"consultation": serialize_document(consultation)}


@router.post("/appointment/{appointment_id}")
async def create_consultation(
    appointment_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    """Open (or fetch) the consultation of an appointment"""
    try:
        consultation, created = await service.create_consultation(appointment_id, caller)
        return JSONResponse(
            status_code=201 if created else 200,
            content=_consultation_response(consultation),
        )

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error creating consultation: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/my-consultations")
async def get_my_consultations(
    status: Optional[str] = None,
    limit: int = 10,
    page: int = 1,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    result = await service.list_my_consultations(caller, status=status, limit=limit, page=page)
    result["consultations"] = serialize_document(result["consultations"])
    return result


@router.get("/room/{room_id}")
async def get_consultation_by_room(
    room_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.get_consultation_by_room(room_id, caller)
    return _consultation_response(consultation)


@router.get("/stats/overview")
async def get_consultation_stats(
    caller: Caller = Depends(get_caller), service=Depends(get_consultation_service)
):
    return serialize_document(await service.consultation_stats(caller))


@router.get("")
async def get_active_consultations(
    caller: Caller = Depends(get_caller), service=Depends(get_consultation_service)
):
    """Consultations currently in progress (staff/admin)"""
    consultations = await service.list_active_consultations(caller)
    return {"results": len(consultations), "consultations": serialize_document(consultations)}


@router.get("/{consultation_id}")
async def get_consultation(
    consultation_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.get_consultation(consultation_id, caller)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/start")
async def start_consultation(
    consultation_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.start_consultation(consultation_id, caller)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/end")
async def end_consultation(
    consultation_id: str,
    body: Optional[ConsultationEnd] = None,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    body = body or ConsultationEnd()
    consultation = await service.end_consultation(
        consultation_id,
        caller,
        notes=body.notes,
        patient_notes=body.patient_notes,
        practitioner_notes=body.practitioner_notes,
        follow_up_required=body.follow_up_required,
        follow_up_notes=body.follow_up_notes,
        next_appointment_suggested=body.next_appointment_suggested,
    )
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/cancel")
async def cancel_consultation(
    consultation_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.cancel_consultation(consultation_id, caller)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/join")
async def join_consultation(
    consultation_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.join_consultation(consultation_id, caller)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/leave")
async def leave_consultation(
    consultation_id: str,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.leave_consultation(consultation_id, caller)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/notes")
async def add_notes(
    consultation_id: str,
    body: ConsultationNotes,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.add_notes(consultation_id, caller, body.notes, body.type)
    return _consultation_response(consultation)


@router.patch("/{consultation_id}/feedback")
async def submit_feedback(
    consultation_id: str,
    body: ConsultationFeedback,
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    consultation = await service.submit_feedback(
        consultation_id, caller, body.rating, body.feedback, body.technical_rating
    )
    return _consultation_response(consultation)


@router.post("/{consultation_id}/token", response_model=RoomTokenResponse)
async def create_consultation_token(
    consultation_id: str,
    user: dict = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
    service=Depends(get_consultation_service),
):
    """Video room token for a participant of the consultation"""
    consultation = await service.get_consultation(consultation_id, caller)
    name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip() or caller.user_id
    return RoomTokenResponse(**create_room_token(consultation["room_id"], caller.user_id, name))
