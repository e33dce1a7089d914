import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm

from api.deps import get_admin_caller, get_current_user, get_db
from api.schemas import StaffCreate, TokenResponse, UserCreate, UserUpdate
from core.errors import BookingError, ValidationError
from core.models import Role
from core.permissions import Caller
from core.security import create_access_token
from core.users import authenticate, register_user, update_user_account
from core.utils import serialize_user

logger = logging.getLogger(__name__)
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
router = APIRouter(prefix="/api/users", tags=["users"])


@auth_router.post("/register", status_code=201)
async def register(user: UserCreate, db=Depends(get_db)):
    """Create a patient account and return a token"""
    try:
        created = await register_user(
            db, user.email, user.password, user.first_name, user.last_name, user.phone
        )
        token = create_access_token(str(created["_id"]), created["role"])
        return {"access_token": token, "token_type": "bearer", "user": serialize_user(created)}

    except BookingError:
        raise
    except Exception as e:
        logger.error(f"Error registering user: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@auth_router.post("/login", response_model=TokenResponse)
async def login(form: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    """Exchange email and password for a bearer token"""
    user = await authenticate(db, form.username, form.password)
    return TokenResponse(access_token=create_access_token(str(user["_id"]), user["role"]))


@auth_router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {"user": serialize_user(user)}


@router.get("")
async def list_users(caller=Depends(get_admin_caller), db=Depends(get_db)):
    """All users (admin only)"""
    users = await db.list_users()
    return {"results": len(users), "users": [serialize_user(u) for u in users]}


@router.post("/staff", status_code=201)
async def create_staff(user: StaffCreate, caller=Depends(get_admin_caller), db=Depends(get_db)):
    """Create a staff or admin (provider) account"""
    try:
        role = Role(user.role)
    except ValueError:
        raise ValidationError(f"Invalid role '{user.role}'")
    if role is Role.PATIENT:
        raise ValidationError("Use /api/auth/register for patient accounts")

    created = await register_user(
        db, user.email, user.password, user.first_name, user.last_name, user.phone, role=role
    )
    return {"user": serialize_user(created)}


@router.patch("/{user_id}")
async def update_user(
    user_id: str, body: UserUpdate, caller: Caller = Depends(get_admin_caller), db=Depends(get_db)
):
    """Change a user's role or deactivate the account (admin only)"""
    updated = await update_user_account(db, user_id, caller, role=body.role, is_active=body.is_active)
    return {"user": serialize_user(updated)}
