"""
Pydantic schemas for events and their sessions.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class SessionCreate(BaseModel):
    start: datetime
    end: datetime
    capacity: int = Field(..., ge=1, le=10000)


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    is_ticketed: bool = True
    sessions: list[SessionCreate] = Field(..., min_length=1)


class SessionResponse(BaseModel):
    id: int
    event_id: int
    start: datetime
    end: datetime
    capacity: int
    reserved: int
    available: int

    model_config = {"from_attributes": True}


class EventResponse(BaseModel):
    id: int
    slug: str
    title: str
    description: str
    is_ticketed: bool
    sessions: list[SessionResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    cached: bool = False
