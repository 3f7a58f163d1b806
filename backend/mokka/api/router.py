"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from mokka.api.routes import admin, events, rsvp

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(rsvp.router)
api_router.include_router(admin.router)
