import logging
from typing import Dict, Optional

from core.errors import ConfigurationError, NotFoundError, ValidationError
from core.models import Role

logger = logging.getLogger(__name__)


async def resolve_provider(db, provider_id: Optional[str] = None) -> Dict:
    """
    Pick the provider an appointment is bound to: the requested one when
    given, otherwise the first active admin.
    """
    if provider_id:
        provider = await db.get_user_by_id(provider_id)
        if not provider:
            raise NotFoundError("Provider not found")
        if provider.get("role") != Role.ADMIN.value or not provider.get("is_active", True):
            raise ValidationError("Selected user is not an active provider")
        return provider

    provider = await db.find_active_provider()
    if not provider:
        logger.error("[Providers] No active admin configured")
        raise ConfigurationError("No admin available for appointment")
    return provider
