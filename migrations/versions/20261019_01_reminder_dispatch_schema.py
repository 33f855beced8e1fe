"""reminder dispatch schema: events, households, reminder_state, message logs

Pins one shape for sms_messages / email_messages so the worker never has to
probe alternative insert payloads at runtime.

Revision ID: 20261019_01
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("tier", sa.String(), nullable=False, server_default="standard"),
        _created_at(),
    )
    op.create_table(
        "households",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("event_id", sa.String(length=36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("household_name", sa.String(), nullable=True),
        sa.Column("phone_e164", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("sms_opt_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rsvp_attending", sa.Boolean(), nullable=True),
        _created_at(),
    )
    op.create_table(
        "reminder_state",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("household_id", sa.String(length=36), sa.ForeignKey("households.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_step", sa.Integer(), nullable=False, server_default="21"),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("next_reminder_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("reminder_step IN (21, 10, 3)", name="ck_reminder_state_step"),
        sa.CheckConstraint("status IN ('active', 'processing', 'completed')", name="ck_reminder_state_status"),
    )
    op.create_index("ix_reminder_state_status_next_at", "reminder_state", ["status", "next_reminder_at"])
    op.create_index("ix_reminder_state_household_id", "reminder_state", ["household_id"])

    op.create_table(
        "sms_messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("household_id", sa.String(length=36), sa.ForeignKey("households.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_step", sa.Integer(), nullable=True),
        sa.Column("to_e164", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_sms_messages_household_step", "sms_messages", ["household_id", "reminder_step"])

    op.create_table(
        "email_messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("household_id", sa.String(length=36), sa.ForeignKey("households.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_step", sa.Integer(), nullable=False),
        sa.Column("to_email", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_email_messages_household_step", "email_messages", ["household_id", "reminder_step"])


def downgrade() -> None:
    op.drop_index("ix_email_messages_household_step", table_name="email_messages")
    op.drop_table("email_messages")
    op.drop_index("ix_sms_messages_household_step", table_name="sms_messages")
    op.drop_table("sms_messages")
    op.drop_index("ix_reminder_state_household_id", table_name="reminder_state")
    op.drop_index("ix_reminder_state_status_next_at", table_name="reminder_state")
    op.drop_table("reminder_state")
    op.drop_table("households")
    op.drop_table("events")
