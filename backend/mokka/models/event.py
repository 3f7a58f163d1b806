"""
Event and session models.

Key design decisions:
- Each bookable time slot is an EventSession row carrying its own capacity
  and a denormalized `reserved` counter (avoids SUM over reservations on
  every availability read)
- `reserved` is only ever changed by conditional UPDATE statements in
  mokka.services.capacity; CHECK constraints are the final safety net
- Index on session `start` for the upcoming-sessions queries used by the
  listing and the cross-session double-booking rule
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from mokka.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    is_ticketed = Column(Boolean, nullable=False, default=True)

    sessions = relationship(
        "EventSession",
        back_populates="event",
        order_by="EventSession.start",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, slug={self.slug})>"


class EventSession(Base, TimestampMixin):
    __tablename__ = "event_sessions"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    start = Column(DateTime(timezone=True), nullable=False)
    end = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    reserved = Column(Integer, nullable=False, default=0)

    event = relationship("Event", back_populates="sessions", lazy="joined")

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="check_session_capacity_positive"),
        CheckConstraint("reserved >= 0", name="check_session_reserved_non_negative"),
        CheckConstraint("reserved <= capacity", name="check_session_reserved_lte_capacity"),
        Index("ix_event_sessions_event_start", "event_id", "start"),
    )

    @property
    def available(self) -> int:
        return self.capacity - self.reserved

    def __repr__(self) -> str:
        return f"<EventSession(id={self.id}, event={self.event_id}, reserved={self.reserved}/{self.capacity})>"
