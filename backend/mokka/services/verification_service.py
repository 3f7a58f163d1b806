"""
Out-of-band email verification for the self-service management flow.

A holder who lost their reservation code asks for a 6-digit code bound to
their email and to one action (cancel or modify). The code lives for
VERIFICATION_CODE_TTL_MINUTES, only one code per email is live at a time
(a new request overwrites the old one), and a code can be used exactly once.

Single use is enforced by the consuming DELETE itself: it only removes the
row when email, code and action all still match, and verification succeeds
only if that statement removed a row. Two concurrent attempts with the same
code therefore cannot both succeed.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from mokka.core.clock import as_utc, utcnow
from mokka.core.config import get_settings
from mokka.core.exceptions import NotFoundError, VerificationFailedError
from mokka.core.logging import get_logger
from mokka.core.metrics import record_verification
from mokka.db.session import atomic
from mokka.models.reservation import Reservation
from mokka.models.verification import VerificationAction, VerificationCode
from mokka.services.booking_service import normalize_email

logger = get_logger(__name__)

_UPSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class IssuedCode:
    email: str
    code: str
    action: VerificationAction
    expires_at: datetime


def _generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


async def _upsert_code(db: AsyncSession, email: str, code: str, action: str, expires_at: datetime) -> None:
    insert = _UPSERT_BY_DIALECT[db.get_bind().dialect.name]
    stmt = insert(VerificationCode).values(
        email=email, code=code, action=action, expires_at=expires_at
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[VerificationCode.email],
        set_={
            "code": stmt.excluded.code,
            "action": stmt.excluded.action,
            "expires_at": stmt.excluded.expires_at,
        },
    )
    await db.execute(stmt)


async def request_code(db: AsyncSession, email: str, action: VerificationAction) -> IssuedCode:
    """
    Issue (or replace) the verification code for `email`.
    Raises NotFoundError when the email holds no reservations at all.
    """
    settings = get_settings()
    email = normalize_email(email)

    async with atomic(db):
        has_reservation = await db.scalar(
            select(Reservation.id).where(Reservation.email == email).limit(1)
        )
        if has_reservation is None:
            raise NotFoundError("No reservations found for this email")

        code = _generate_code()
        expires_at = utcnow() + timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
        await _upsert_code(db, email, code, action.value, expires_at)

    record_verification("issued")
    logger.info("verification_code_issued", email=email, action=action.value)
    return IssuedCode(email=email, code=code, action=action, expires_at=expires_at)


def _reject(email: str, reason: str, message: str):
    record_verification("rejected")
    logger.info("verification_rejected", email=email, reason=reason)
    return VerificationFailedError(message, reason=reason)


async def verify_code(db: AsyncSession, email: str, code: str, action: VerificationAction) -> str:
    """
    Check and consume a verification code. Returns the authorized email.

    Runs inside the caller's transaction when there is one, so the code is
    only consumed if the action it authorizes also commits.
    """
    email = normalize_email(email)
    code = code.strip()

    async with atomic(db):
        stored = (
            await db.execute(
                select(VerificationCode)
                .where(VerificationCode.email == email)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if stored is None:
            raise _reject(email, "missing", "Invalid verification code")
        if not secrets.compare_digest(stored.code.encode(), code.encode()):
            raise _reject(email, "mismatch", "Incorrect verification code")
        if utcnow() >= as_utc(stored.expires_at):
            raise _reject(email, "expired", "The verification code has expired")
        if stored.action != action.value:
            raise _reject(email, "wrong_action", "This code was issued for a different action")

        consumed = await db.execute(
            delete(VerificationCode)
            .where(
                VerificationCode.email == email,
                VerificationCode.code == code,
                VerificationCode.action == action.value,
            )
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            raise _reject(email, "consumed", "Invalid verification code")
        db.expunge(stored)

    record_verification("verified")
    logger.info("verification_succeeded", email=email, action=action.value)
    return email
