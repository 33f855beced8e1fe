"""Pick the reminders a dispatch run should look at."""

from __future__ import annotations

from typing import Iterable, List

from config import settings
import db


def filter_eligible(rows: Iterable[db.ReminderState], require_unresponded: bool = False) -> List[db.ReminderState]:
    """Drop rows that can never be delivered (or shouldn't be this run).

    Pure: rows are neither mutated nor written back.
    """
    eligible = []
    for row in rows:
        household = row.household
        if household is None:
            continue
        if require_unresponded and household.rsvp_attending is not None:
            continue
        if not household.phone_e164 and not household.email:
            continue
        eligible.append(row)
    return eligible


async def select_due_reminders(limit: int) -> List[db.ReminderState]:
    rows = await db.fetch_due_reminders(limit=limit)
    return filter_eligible(rows, require_unresponded=settings.REQUIRE_UNRESPONDED_ONLY)
