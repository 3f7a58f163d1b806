"""
Notification hook for reservation emails.

Delivery is out of scope: the notifier only logs what would be sent. It is
called after the transaction commits, so a failing notifier can never undo
a booking; failures are logged and the request still succeeds.
"""

from datetime import datetime
from typing import List

from fastapi import Request

from mokka.core.logging import get_logger
from mokka.models.reservation import Reservation

logger = get_logger(__name__)


class Notifier:
    """Logs outgoing messages; keeps them in `outbox` when asked to (tests)."""

    def __init__(self, keep_outbox: bool = False):
        self.keep_outbox = keep_outbox
        self.outbox: List[dict] = []

    async def send(self, to: str, subject: str, body: str, **fields) -> None:
        message = {"to": to, "subject": subject, "body": body, **fields}
        try:
            await self._deliver(message)
        except Exception as e:
            logger.warning("notification_failed", to=to, subject=subject, error=str(e))

    async def _deliver(self, message: dict) -> None:
        if self.keep_outbox:
            self.outbox.append(message)
        logger.info("notification_sent", to=message["to"], subject=message["subject"])

    async def reservation_confirmation(self, reservation: Reservation) -> None:
        session = reservation.session
        await self.send(
            reservation.email,
            "Your reservation at Mokka",
            (
                f"Hi {reservation.name}, your reservation for {reservation.seats} seat(s) "
                f"on {session.start:%d.%m.%Y %H:%M} is received. "
                f"Reservation code: {reservation.reservation_code}"
            ),
            kind="reservation_confirmation",
            reservation_code=reservation.reservation_code,
        )

    async def verification_code(self, email: str, code: str, action: str, expires_at: datetime) -> None:
        await self.send(
            email,
            "Your Mokka verification code",
            f"Use code {code} to {action} your reservations. It expires at {expires_at:%H:%M} UTC.",
            kind="verification_code",
            code=code,
            action=action,
        )


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
