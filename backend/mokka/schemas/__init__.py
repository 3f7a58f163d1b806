from mokka.schemas.admin import AdminLogin, Token
from mokka.schemas.event import EventCreate, EventResponse, EventListResponse, SessionCreate
from mokka.schemas.reservation import (
    ReservationCreate,
    ReservationResponse,
    PublicManageRequest,
    AdminReservationUpdate,
)
from mokka.schemas.verification import VerificationRequest, VerifiedManageRequest

__all__ = [
    "AdminLogin", "Token",
    "EventCreate", "EventResponse", "EventListResponse", "SessionCreate",
    "ReservationCreate", "ReservationResponse", "PublicManageRequest", "AdminReservationUpdate",
    "VerificationRequest", "VerifiedManageRequest",
]
