import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request, Header

from api.deps import get_consultation_service, get_db
from core.errors import BookingError
from core.permissions import Caller
from core.video import verify_webhook

logger = logging.getLogger(__name__)
router = APIRouter()

ROOM_PREFIX = "consultation_"


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@router.post("/api/webhook/livekit")
async def livekit_webhook(
    request: Request,
    authorization: str | None = Header(default=None),
    db=Depends(get_db),
    service=Depends(get_consultation_service),
):
    """Receive LiveKit webhooks and mirror room presence into consultations."""
    body = (await request.body()).decode("utf-8")
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    try:
        event = verify_webhook(body, authorization)
    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Webhook verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid webhook")

    event_type = event.event
    room_name = event.room.name if event.room else None
    identity = event.participant.identity if event.participant else None
    logger.info(f"LiveKit webhook: {event_type} room={room_name} identity={identity}")

    if event_type not in ("participant_joined", "participant_left"):
        return {"ok": True}
    if not room_name or not room_name.startswith(ROOM_PREFIX) or not identity:
        return {"ok": True}

    try:
        consultation = await db.get_consultation_by_room(room_name)
        user = await db.get_user_by_id(identity)
        if not consultation or not user:
            logger.warning(f"Webhook for unknown room/user: {room_name} {identity}")
            return {"ok": True}

        caller = Caller.from_user(user)
        consultation_id = str(consultation["_id"])
        if event_type == "participant_joined":
            await service.join_consultation(consultation_id, caller)
        else:
            await service.leave_consultation(consultation_id, caller)
    except BookingError as e:
        logger.warning(f"Webhook {event_type} rejected for {identity}: {e.message}")

    return {"ok": True}
