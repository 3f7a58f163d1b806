from mokka.models.event import Event, EventSession
from mokka.models.reservation import Reservation, ReservationStatus
from mokka.models.verification import VerificationCode, VerificationAction

__all__ = [
    "Event", "EventSession",
    "Reservation", "ReservationStatus",
    "VerificationCode", "VerificationAction",
]
