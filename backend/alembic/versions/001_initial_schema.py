"""Initial schema: events, sessions, reservations, verification codes.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_RESERVATION = sa.text("status <> 'CANCELLED'")


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_ticketed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_slug", "events", ["slug"], unique=True)

    op.create_table(
        "event_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity >= 1", name="check_session_capacity_positive"),
        sa.CheckConstraint("reserved >= 0", name="check_session_reserved_non_negative"),
        sa.CheckConstraint("reserved <= capacity", name="check_session_reserved_lte_capacity"),
    )
    op.create_index("ix_event_sessions_id", "event_sessions", ["id"])
    op.create_index("ix_event_sessions_event_id", "event_sessions", ["event_id"])
    # Listing and the cross-session double-booking rule both filter one
    # event's sessions by start time.
    op.create_index("ix_event_sessions_event_start", "event_sessions", ["event_id", "start"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("event_sessions.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("seats", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("reservation_code", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("seats >= 1", name="check_reservation_seats_positive"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')",
            name="check_reservation_status",
        ),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_session_id", "reservations", ["session_id"])
    op.create_index("ix_reservations_email", "reservations", ["email"])
    op.create_index("ix_reservations_reservation_code", "reservations", ["reservation_code"], unique=True)
    # One active reservation per (email, session); cancelled rows stay for audit
    op.create_index(
        "uq_reservations_active_email_session",
        "reservations",
        ["email", "session_id"],
        unique=True,
        postgresql_where=ACTIVE_RESERVATION,
        sqlite_where=ACTIVE_RESERVATION,
    )

    op.create_table(
        "verification_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
    )
    op.create_index("ix_verification_codes_email", "verification_codes", ["email"], unique=True)


def downgrade() -> None:
    op.drop_table("verification_codes")
    op.drop_table("reservations")
    op.drop_table("event_sessions")
    op.drop_table("events")
