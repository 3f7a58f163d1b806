"""
Pydantic schemas for booking and reservation management.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from mokka.models.reservation import ReservationStatus


class ReservationCreate(BaseModel):
    session_id: int
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    seats: int = Field(default=1, ge=1)


class SessionSummary(BaseModel):
    id: int
    event_id: int
    start: datetime
    end: datetime
    capacity: int
    reserved: int
    available: int

    model_config = {"from_attributes": True}


class ReservationResponse(BaseModel):
    id: int
    session_id: int
    name: str
    email: str
    phone: Optional[str]
    seats: int
    status: ReservationStatus
    reservation_code: str
    created_at: datetime
    session: SessionSummary

    model_config = {"from_attributes": True}


class PublicManageRequest(BaseModel):
    reservation_code: str = Field(..., min_length=1, max_length=16)
    action: Literal["cancel", "modify"]
    rsvp_id: Optional[int] = None
    new_seats: Optional[int] = Field(None, ge=1)


class CancelResponse(BaseModel):
    message: str
    cancelled_count: int


class ModifyResponse(BaseModel):
    message: str
    reservation: ReservationResponse


class AdminReservationUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    seats: int = Field(..., ge=1)
    status: ReservationStatus
    session_id: int


class DeleteResponse(BaseModel):
    message: str
    id: int


class OverviewReservation(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    seats: int
    status: ReservationStatus
    reservation_code: str

    model_config = {"from_attributes": True}


class OverviewSession(BaseModel):
    session: dict
    reservations: list[OverviewReservation]


class OverviewEvent(BaseModel):
    event: dict
    sessions: list[OverviewSession]


class OverviewSummary(BaseModel):
    total_reservations: int
    total_seats: int
    pending: int
    confirmed: int
    cancelled: int


class ReservationOverview(BaseModel):
    summary: OverviewSummary
    events: list[OverviewEvent]
