from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=8)
    first_name: str
    last_name: str
    phone: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Document(BaseModel):
    name: str
    url: str
    upload_date: datetime = Field(default_factory=datetime.utcnow)


class AppointmentCreate(BaseModel):
    appointment_type: str
    start_time: datetime
    end_time: datetime
    reason: str
    is_virtual: bool = False
    notes: Optional[str] = None
    meeting_link: Optional[str] = None
    provider_id: Optional[str] = None


class AppointmentUpdate(BaseModel):
    appointment_type: Optional[str] = None
    status: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    is_virtual: Optional[bool] = None
    meeting_link: Optional[str] = None
    documents: Optional[List[Document]] = None
    admin_id: Optional[str] = None
    cancellation_reason: Optional[str] = None


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None


class ConsultationEnd(BaseModel):
    notes: Optional[str] = None
    patient_notes: Optional[str] = None
    practitioner_notes: Optional[str] = None
    follow_up_required: Optional[bool] = None
    follow_up_notes: Optional[str] = None
    next_appointment_suggested: Optional[datetime] = None


class ConsultationNotes(BaseModel):
    notes: str
    type: str = "general"


class ConsultationFeedback(BaseModel):
    rating: int
    feedback: Optional[str] = None
    technical_rating: Optional[int] = None


class RoomTokenResponse(BaseModel):
    token: str
    url: str
    room_name: str


class StaffCreate(UserCreate):
    role: str = "admin"


class UserUpdate(BaseModel):
    role: Optional[str] = None
    is_active: Optional[bool] = None
