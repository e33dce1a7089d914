import logging
from typing import Dict, Optional

from core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.models import Role, User
from core.permissions import Caller
from core.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)


async def register_user(
    db,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: Optional[str] = None,
    role: Role = Role.PATIENT,
) -> Dict:
    """Create an account; the email is the login and must be unique."""
    email = email.strip().lower()
    if "@" not in email:
        raise ValidationError("Please provide a valid email")

    if await db.get_user_by_email(email):
        raise ConflictError("Email already in use")

    user = User(
        email=email,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        password_hash=get_password_hash(password),
        role=role,
        phone=phone,
    ).to_dict()
    user["_id"] = await db.create_user(user)

    logger.info(f"[Users] Registered {role.value} {email}")
    return user


async def authenticate(db, email: str, password: str) -> Dict:
    user = await db.get_user_by_email(email.strip().lower())
    if not user or not verify_password(password, user["password_hash"]):
        raise AuthenticationError("Incorrect email or password")
    if not user.get("is_active", True):
        raise AuthenticationError("This account has been deactivated")
    return user


async def update_user_account(
    db,
    user_id: str,
    caller: Caller,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Dict:
    """Change a user's role or active flag (admin only)."""
    if not caller.is_admin:
        raise PermissionDeniedError("You do not have permission to perform this action")

    user = await db.get_user_by_id(user_id)
    if not user:
        raise NotFoundError("No user found with that ID")

    updates = {}
    if role is not None:
        try:
            updates["role"] = Role(role).value
        except ValueError:
            raise ValidationError("Invalid role specified")
    if is_active is not None:
        updates["is_active"] = bool(is_active)
    if not updates:
        raise ValidationError("Nothing to update")

    if str(user["_id"]) == caller.user_id:
        raise ValidationError("You cannot change your own role or status")

    updated = await db.update_user(user_id, updates)
    logger.info(f"[Users] {caller.user_id} updated {user['email']}: {updates}")
    return updated
