from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from core.appointments import AppointmentService
from core.consultations import ConsultationService
from core.database import DatabaseManager
from core.errors import AuthenticationError, PermissionDeniedError
from core.permissions import Caller
from core.security import decode_access_token
from core.slots import SlotService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

db = DatabaseManager()


def get_db():
    return db


async def get_current_user(
    token: str = Depends(oauth2_scheme), database=Depends(get_db)
) -> dict:
    payload = decode_access_token(token)
    user = await database.get_user_by_id(payload["sub"])
    if not user:
        raise AuthenticationError("The user belonging to this token no longer exists")
    if not user.get("is_active", True):
        raise PermissionDeniedError("This account has been deactivated")
    return user


async def get_caller(user: dict = Depends(get_current_user)) -> Caller:
    return Caller.from_user(user)


async def get_admin_caller(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise PermissionDeniedError("You do not have permission to perform this action")
    return caller


def get_slot_service(database=Depends(get_db)) -> SlotService:
    return SlotService(database)


def get_appointment_service(database=Depends(get_db)) -> AppointmentService:
    return AppointmentService(database)


def get_consultation_service(database=Depends(get_db)) -> ConsultationService:
    return ConsultationService(database)
