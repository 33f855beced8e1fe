"""Shared fixtures: an in-memory stand-in for the ``db`` store helpers.

Dispatcher, selection and the HTTP layer only reach the database through the
``db`` module functions, so patching those gives the tests a full store
without PostgreSQL.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

import db
from config import settings

UTC = timezone.utc


def make_reminder(
    *,
    step: int = 21,
    status: str = "active",
    next_at: datetime | None = None,
    claimed_at: datetime | None = None,
    tier: str = "standard",
    event_date: date | None = date(2026, 12, 12),
    name: str | None = "The Smiths",
    phone: str | None = "+15550001111",
    email: str | None = "smiths@example.com",
    sms_opt_out: bool = False,
    rsvp_attending: bool | None = None,
    with_household: bool = True,
    with_event: bool = True,
) -> db.ReminderState:
    event = db.Event(id=str(uuid4()), name="Wedding", event_date=event_date, tier=tier) if with_event else None
    household = None
    if with_household:
        household = db.Household(
            id=str(uuid4()),
            event_id=event.id if event else str(uuid4()),
            household_name=name,
            phone_e164=phone,
            email=email,
            sms_opt_out=sms_opt_out,
            rsvp_attending=rsvp_attending,
        )
        household.event = event
    reminder = db.ReminderState(
        id=str(uuid4()),
        household_id=household.id if household else str(uuid4()),
        reminder_step=step,
        status=status,
        next_reminder_at=next_at or datetime.now(tz=UTC) - timedelta(hours=1),
        claimed_at=claimed_at,
    )
    reminder.household = household
    return reminder


class FakeStore:
    def __init__(self):
        self.reminders: dict[str, db.ReminderState] = {}
        self.sms_log: list[dict] = []
        self.email_log: list[dict] = []
        self.fail_on: dict[str, Exception] = {}
        self.lease_seconds = 900

    # -- test helpers -------------------------------------------------
    def add(self, reminder: db.ReminderState) -> db.ReminderState:
        self.reminders[reminder.id] = reminder
        return reminder

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    def _claimable(self, row: db.ReminderState, now: datetime) -> bool:
        if row.status == db.STATUS_ACTIVE:
            return True
        return (
            row.status == db.STATUS_PROCESSING
            and row.claimed_at is not None
            and row.claimed_at <= now - timedelta(seconds=self.lease_seconds)
        )

    def _due(self, now: datetime) -> list[db.ReminderState]:
        rows = [
            r for r in self.reminders.values()
            if self._claimable(r, now) and r.next_reminder_at is not None and r.next_reminder_at <= now
        ]
        return sorted(rows, key=lambda r: r.next_reminder_at)

    @staticmethod
    def _snapshot(row: db.ReminderState) -> db.ReminderState:
        copy = db.ReminderState(
            id=row.id,
            household_id=row.household_id,
            reminder_step=row.reminder_step,
            status=row.status,
            next_reminder_at=row.next_reminder_at,
            claimed_at=row.claimed_at,
        )
        copy.household = row.household
        return copy

    def _update_if(self, reminder_id: str, expected_status: str, token=None, **values) -> bool:
        row = self.reminders.get(reminder_id)
        if row is None or row.status != expected_status:
            return False
        if token is not None and row.claimed_at != token:
            return False
        for key, value in values.items():
            setattr(row, key, value)
        return True

    # -- patched db API -----------------------------------------------
    async def fetch_due_reminders(self, limit=5, now=None, lease_seconds=None):
        self._maybe_fail("fetch_due_reminders")
        now = now or datetime.now(tz=UTC)
        return [self._snapshot(r) for r in self._due(now)[:limit]]

    async def list_due_reminders(self, now=None, lease_seconds=None):
        self._maybe_fail("list_due_reminders")
        now = now or datetime.now(tz=UTC)
        return [
            {
                "id": r.id,
                "household_id": r.household_id,
                "reminder_step": r.reminder_step,
                "next_reminder_at": r.next_reminder_at,
            }
            for r in self._due(now)
        ]

    async def count_reminders_by_status(self):
        counts: dict[str, int] = {}
        for r in self.reminders.values():
            counts[r.status] = counts.get(r.status, 0) + 1
        return counts

    async def claim_reminder(self, reminder_id, step=None, now=None, lease_seconds=None):
        self._maybe_fail("claim_reminder")
        now = now or datetime.now(tz=UTC)
        row = self.reminders.get(reminder_id)
        if row is None or not self._claimable(row, now):
            return False
        if row.next_reminder_at is None or row.next_reminder_at > now:
            return False
        if step is not None and row.reminder_step != step:
            return False
        row.status = db.STATUS_PROCESSING
        row.claimed_at = now
        return True

    async def release_reminder(self, reminder_id, claimed_at=None):
        self._maybe_fail("release_reminder")
        return self._update_if(reminder_id, db.STATUS_PROCESSING, claimed_at, status=db.STATUS_ACTIVE, claimed_at=None)

    async def advance_reminder(self, reminder_id, step, next_at, claimed_at=None):
        self._maybe_fail("advance_reminder")
        return self._update_if(
            reminder_id,
            db.STATUS_PROCESSING,
            claimed_at,
            status=db.STATUS_ACTIVE,
            reminder_step=step,
            next_reminder_at=next_at,
            claimed_at=None,
        )

    async def complete_reminder(self, reminder_id, claimed_at=None):
        self._maybe_fail("complete_reminder")
        return self._update_if(
            reminder_id,
            db.STATUS_PROCESSING,
            claimed_at,
            status=db.STATUS_COMPLETED,
            next_reminder_at=None,
            claimed_at=None,
        )

    async def insert_sms_message(self, **fields):
        self._maybe_fail("insert_sms_message")
        self.sms_log.append(fields)
        return str(uuid4())

    async def insert_email_message(self, **fields):
        self._maybe_fail("insert_email_message")
        self.email_log.append(fields)
        return str(uuid4())

    async def email_message_exists(self, household_id, reminder_step):
        return any(
            e["household_id"] == household_id and e["reminder_step"] == reminder_step
            for e in self.email_log
        )

    async def dispose_engine(self):
        return None


_PATCHED = (
    "fetch_due_reminders",
    "list_due_reminders",
    "count_reminders_by_status",
    "claim_reminder",
    "release_reminder",
    "advance_reminder",
    "complete_reminder",
    "insert_sms_message",
    "insert_email_message",
    "email_message_exists",
    "dispose_engine",
)


@pytest.fixture()
def store(monkeypatch):
    fake = FakeStore()
    for name in _PATCHED:
        monkeypatch.setattr(db, name, getattr(fake, name))
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://test/test")
    monkeypatch.setattr(settings, "REQUIRE_UNRESPONDED_ONLY", False)
    monkeypatch.setattr(settings, "APP_ENV", "production")
    monkeypatch.setattr(settings, "DEV_FORCE_TO", None)
    monkeypatch.setattr(settings, "TELNYX_API_KEY", "KEY_test")
    monkeypatch.setattr(settings, "TELNYX_FROM_NUMBER", "+15550000000")
    return fake


@pytest.fixture()
def sent_sms(monkeypatch):
    """Capture outgoing SMS instead of calling Telnyx."""
    from app.utils import sms as sms_util

    sent: list[tuple[str, str]] = []

    def fake_send_sms(to, body):
        sent.append((to, body))
        return f"msg-{len(sent)}"

    monkeypatch.setattr(sms_util, "send_sms", fake_send_sms)
    return sent
