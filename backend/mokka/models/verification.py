"""
Short-lived numeric codes proving control of an email address.
At most one outstanding code per email; a new request replaces the old one.
"""

import enum

from sqlalchemy import Column, DateTime, Integer, String

from mokka.db.base import Base


class VerificationAction(str, enum.Enum):
    CANCEL = "cancel"
    MODIFY = "modify"


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    action = Column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<VerificationCode(email={self.email}, action={self.action})>"
