"""
Pydantic schemas for the email-verified self-service flow.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from mokka.models.verification import VerificationAction


class VerificationRequest(BaseModel):
    email: EmailStr
    action: VerificationAction = VerificationAction.MODIFY


class VerificationRequestResponse(BaseModel):
    message: str
    expires_at: datetime
    # Only filled in when EXPOSE_VERIFICATION_CODES is on
    verification_code: Optional[str] = None


class VerifiedManageRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^[0-9]{6}$")
    action: VerificationAction
    rsvp_id: Optional[int] = None
    new_seats: Optional[int] = Field(None, ge=1)
