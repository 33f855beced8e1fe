"""
Reminder dispatcher: the reconciliation loop over ``reminder_state``.

Per reminder, strictly sequentially within a batch:

1. claim (``active -> processing``); losing the race is not an error
2. validate household + event join data
3. work out which channels are reachable
4. queue an email log row (idempotent per household + step)
5. send the SMS (premium only) and log it
6. advance to the next step, or complete
7. on any failure: log a ``failed`` SMS row, release back to ``active``

The claim timestamp acts as a token: release, advance and complete only
apply while the row still carries it, so a run whose lease expired and was
re-claimed cannot overwrite the new holder.

One reminder failing never aborts the batch; the caller gets a result per
reminder and the next scheduled tick retries whatever was released.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Union

from app.services.selection import select_due_reminders
from app.types.reminder_contract import DispatchResult
from app.utils import sms
import db

_LOGGER = logging.getLogger(__name__)

UTC = timezone.utc

# Days-before-event checkpoints; None marks the last step.
NEXT_STEP: Dict[int, Optional[int]] = {21: 10, 10: 3, 3: None}

EMAIL_SUBJECT = "Event reminder"


class ReminderContextError(ValueError):
    """Household / event data needed to dispatch is missing."""


class ClaimLostError(RuntimeError):
    """Another run re-claimed the reminder before this run could write it back."""


@dataclass(frozen=True)
class Channels:
    email: bool
    sms: bool


# ──────────────────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────────────────

def next_step(step: int) -> Optional[int]:
    return NEXT_STEP.get(step)


def compute_next_reminder_at(event_date: Union[date, str], days_before: int) -> datetime:
    """UTC midnight of *event_date* minus *days_before* days."""
    if isinstance(event_date, str):
        event_date = date.fromisoformat(event_date[:10])
    return db.reminder_at(event_date, days_before)


def build_message(household: db.Household, event: db.Event, reminder_step: int) -> str:
    event_date = event.event_date.isoformat() if event and event.event_date else "(unknown date)"
    name = (household.household_name if household else None) or "there"
    return (
        f"Hi {name} - reminder ({reminder_step}): your event is on {event_date}. "
        "Please RSVP via your link."
    )


def eligible_channels(household: db.Household, event: db.Event) -> Channels:
    is_premium = (event.tier or "").lower() == "premium"
    return Channels(
        email=bool(household.email),
        sms=is_premium and bool(household.phone_e164) and household.sms_opt_out is not True,
    )


# ──────────────────────────────────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────────────────────────────────

async def process_due_reminders(limit: int = 3) -> List[DispatchResult]:
    reminders = await select_due_reminders(limit)
    results: List[DispatchResult] = []
    for reminder in reminders:
        results.append(await _process_reminder(reminder))
    if results:
        _LOGGER.info(
            "Dispatch batch done: %d selected, %d sent, %d failed",
            len(results),
            sum(r.sent for r in results),
            sum(r.error is not None for r in results),
        )
    return results


async def _process_reminder(reminder: db.ReminderState) -> DispatchResult:
    rid = reminder.id
    # Written as claimed_at; every later write must still match it.
    claimed_at = datetime.now(tz=UTC)

    try:
        claimed = await db.claim_reminder(rid, step=reminder.reminder_step, now=claimed_at)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Reminder %s: claim failed: %s", rid, exc)
        return DispatchResult(reminder_id=rid, sent=False, error=str(exc))
    if not claimed:
        _LOGGER.info("Reminder %s already claimed elsewhere; skipping", rid)
        return DispatchResult(reminder_id=rid, sent=False)

    try:
        sent = await _dispatch_claimed(reminder, claimed_at)
    except ClaimLostError as exc:
        # The row belongs to the run that re-claimed it; leave it alone.
        _LOGGER.warning("Reminder %s: %s", rid, exc)
        return DispatchResult(reminder_id=rid, sent=False, error=str(exc))
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Reminder %s failed at step %s: %s", rid, reminder.reminder_step, exc)
        await _log_failure(reminder, exc)
        await _release(rid, claimed_at)
        return DispatchResult(reminder_id=rid, sent=False, error=str(exc))

    return DispatchResult(reminder_id=rid, sent=sent)


async def _dispatch_claimed(reminder: db.ReminderState, claimed_at: datetime) -> bool:
    household = reminder.household
    event = household.event if household is not None else None
    if household is None or event is None:
        raise ReminderContextError("Missing households/events join data")

    step = reminder.reminder_step
    channels = eligible_channels(household, event)
    message = build_message(household, event, step)

    if channels.email:
        await _queue_email(household, step, message)

    if channels.sms:
        to = sms.resolve_send_to(household.phone_e164)
        provider_id = await asyncio.to_thread(sms.send_sms, to, message)
        _LOGGER.info("Reminder %s: SMS sent for step %s", reminder.id, step)
        # The SMS is out; a failed audit write must not release the claim and resend it.
        try:
            await db.insert_sms_message(
                household_id=household.id,
                reminder_step=step,
                to_e164=to,
                body=message,
                status="sent",
                provider_message_id=provider_id,
            )
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Reminder %s: SMS sent but log insert failed", reminder.id)
    elif not channels.email:
        if not await db.complete_reminder(reminder.id, claimed_at=claimed_at):
            raise ClaimLostError("claim lost before completing")
        _LOGGER.info("Reminder %s: no reachable channel, completed", reminder.id)
        return False

    await _advance_or_complete(reminder, event, claimed_at)
    return True


async def _queue_email(household: db.Household, step: int, message: str) -> None:
    if await db.email_message_exists(household.id, step):
        return
    await db.insert_email_message(
        household_id=household.id,
        reminder_step=step,
        to_email=household.email,
        subject=EMAIL_SUBJECT,
        body=message,
        status="queued",
    )


async def _advance_or_complete(reminder: db.ReminderState, event: db.Event, claimed_at: datetime) -> None:
    nxt = next_step(reminder.reminder_step)
    if nxt is None:
        if not await db.complete_reminder(reminder.id, claimed_at=claimed_at):
            raise ClaimLostError("claim lost before completing")
        return
    if not event.event_date:
        raise ReminderContextError("Missing event_date")
    next_at = compute_next_reminder_at(event.event_date, nxt)
    if not await db.advance_reminder(reminder.id, nxt, next_at, claimed_at=claimed_at):
        raise ClaimLostError(f"claim lost before advancing to step {nxt}")


async def _log_failure(reminder: db.ReminderState, exc: Exception) -> None:
    household = reminder.household
    if household is None or not household.phone_e164:
        return
    try:
        await db.insert_sms_message(
            household_id=household.id,
            reminder_step=reminder.reminder_step,
            to_e164=sms.resolve_send_to(household.phone_e164),
            body=f"FAILED: {exc}",
            status="failed",
            error_message=str(exc),
        )
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Could not write failure log for reminder %s", reminder.id)


async def _release(reminder_id: str, claimed_at: datetime) -> None:
    try:
        released = await db.release_reminder(reminder_id, claimed_at=claimed_at)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Could not release reminder %s; it stays processing until its lease expires", reminder_id)
        return
    if not released:
        _LOGGER.warning("Reminder %s: claim lost before release; left to the current holder", reminder_id)
