import logging
from typing import Dict

from livekit import api

from core.config import settings
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def create_room_token(room_name: str, identity: str, name: str) -> Dict[str, str]:
    """LiveKit access token for one consultation room"""
    if not settings.livekit_configured:
        raise ConfigurationError("LiveKit configuration not found")

    token = (
        api.AccessToken(settings.livekit_api_key, settings.livekit_api_secret)
        .with_identity(identity)
        .with_name(name)
        .with_grants(
            api.VideoGrants(
                room_join=True,
                room=room_name,
                can_publish=True,
                can_subscribe=True,
            )
        )
        .to_jwt()
    )

    logger.info(f"[Video] Issued token for {identity} in room {room_name}")
    return {"token": token, "url": settings.livekit_url, "room_name": room_name}


def verify_webhook(body: str, authorization: str):
    """Decode and verify a LiveKit webhook event"""
    if not settings.livekit_configured:
        raise ConfigurationError("LiveKit configuration not found")

    receiver = api.WebhookReceiver(
        api.TokenVerifier(settings.livekit_api_key, settings.livekit_api_secret)
    )
    return receiver.receive(body, authorization.replace("Bearer ", ""))
