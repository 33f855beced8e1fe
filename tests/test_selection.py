from datetime import datetime, timedelta, timezone

import pytest

from app.services import selection
from config import settings

from conftest import make_reminder


def test_filter_drops_unreachable_and_orphans():
    keep = make_reminder()
    phone_only = make_reminder(email=None)
    email_only = make_reminder(phone=None)
    no_contact = make_reminder(phone=None, email=None)
    orphan = make_reminder(with_household=False)

    out = selection.filter_eligible([keep, phone_only, email_only, no_contact, orphan])

    assert out == [keep, phone_only, email_only]


def test_filter_unresponded_only():
    unknown = make_reminder(rsvp_attending=None)
    yes = make_reminder(rsvp_attending=True)
    no = make_reminder(rsvp_attending=False)

    assert selection.filter_eligible([unknown, yes, no], require_unresponded=True) == [unknown]
    assert selection.filter_eligible([unknown, yes, no], require_unresponded=False) == [unknown, yes, no]


def test_filter_is_pure():
    rows = [make_reminder(phone=None, email=None), make_reminder()]
    before = [(r.id, r.status, r.reminder_step) for r in rows]

    selection.filter_eligible(rows)
    selection.filter_eligible(rows)

    assert len(rows) == 2
    assert [(r.id, r.status, r.reminder_step) for r in rows] == before


@pytest.mark.asyncio
async def test_select_orders_oldest_first_and_limits(store, monkeypatch):
    now = datetime.now(tz=timezone.utc)
    newest = store.add(make_reminder(next_at=now - timedelta(minutes=1)))
    oldest = store.add(make_reminder(next_at=now - timedelta(days=1)))
    store.add(make_reminder(next_at=now + timedelta(days=1)))
    store.add(make_reminder(status="completed", next_at=now - timedelta(days=2)))
    monkeypatch.setattr(settings, "REQUIRE_UNRESPONDED_ONLY", True)
    store.add(make_reminder(rsvp_attending=True, next_at=now - timedelta(hours=2)))

    rows = await selection.select_due_reminders(limit=5)
    assert [r.id for r in rows] == [oldest.id, newest.id]

    rows = await selection.select_due_reminders(limit=1)
    assert [r.id for r in rows] == [oldest.id]
