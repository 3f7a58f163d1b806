"""
Reservation model: one party's claim on seats within a session.

Key design decisions:
- Status field allows cancellation without deleting records (audit trail)
- Partial unique index on (email, session_id) over non-cancelled rows backs
  the one-active-booking-per-session rule when two requests race
- reservation_code is the secret the holder uses for self-service changes
"""

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import relationship

from mokka.db.base import Base, TimestampMixin


class ReservationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


ACTIVE_RESERVATION = text("status <> 'CANCELLED'")


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    seats = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)
    reservation_code = Column(String(16), nullable=False, unique=True, index=True)

    session = relationship("EventSession", lazy="joined")

    __table_args__ = (
        CheckConstraint("seats >= 1", name="check_reservation_seats_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')",
            name="check_reservation_status",
        ),
        Index(
            "uq_reservations_active_email_session",
            "email",
            "session_id",
            unique=True,
            postgresql_where=ACTIVE_RESERVATION,
            sqlite_where=ACTIVE_RESERVATION,
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status != ReservationStatus.CANCELLED.value

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, session={self.session_id}, seats={self.seats}, status={self.status})>"
