"""
Async DB helpers for the reminder dispatch worker.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Every write against ``reminder_state`` is scoped to a single reminder id; the
conditional UPDATE ... RETURNING in :func:`conditional_update_reminder` is the
only concurrency control between overlapping dispatch runs.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Iterable, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    and_, delete, exists, func, or_, select, update,
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship, selectinload
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from config import settings

UTC = timezone.utc

STATUS_ACTIVE = "active"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"

FIRST_REMINDER_STEP = 21

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = settings.database_url()
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        _engine = create_async_engine(_build_url(), pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

def _uuid() -> str:
    return str(uuid4())


class Event(Base):
    __tablename__ = "events"

    id:         Mapped[str]  = mapped_column(String(36), primary_key=True, default=_uuid)
    name:       Mapped[str | None]
    event_date: Mapped[date | None] = mapped_column(Date)
    tier:       Mapped[str]  = mapped_column(default="standard")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Household(Base):
    __tablename__ = "households"

    id:             Mapped[str]  = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id:       Mapped[str]  = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    household_name: Mapped[str | None]
    phone_e164:     Mapped[str | None]
    email:          Mapped[str | None]
    sms_opt_out:    Mapped[bool] = mapped_column(Boolean, default=False)
    rsvp_attending: Mapped[bool | None] = mapped_column(Boolean)
    created_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    event: Mapped[Event | None] = relationship()


class ReminderState(Base):
    __tablename__ = "reminder_state"

    id:               Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    household_id:     Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"))
    reminder_step:    Mapped[int] = mapped_column(Integer, default=FIRST_REMINDER_STEP)
    status:           Mapped[str] = mapped_column(default=STATUS_ACTIVE)
    next_reminder_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    claimed_at:       Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at:       Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:       Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    household: Mapped[Household | None] = relationship()

    __table_args__ = (
        Index("ix_reminder_state_status_next_at", "status", "next_reminder_at"),
        Index("ix_reminder_state_household_id", "household_id"),
    )


class SmsMessage(Base):
    __tablename__ = "sms_messages"

    id:                  Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    household_id:        Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"))
    reminder_step:       Mapped[int | None]
    to_e164:             Mapped[str]
    body:                Mapped[str] = mapped_column(Text)
    status:              Mapped[str]
    provider_message_id: Mapped[str | None]
    error_code:          Mapped[str | None]
    error_message:       Mapped[str | None] = mapped_column(Text)
    created_at:          Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_sms_messages_household_step", "household_id", "reminder_step"),
    )


class EmailMessage(Base):
    __tablename__ = "email_messages"

    id:                  Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    household_id:        Mapped[str] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"))
    reminder_step:       Mapped[int]
    to_email:            Mapped[str]
    subject:             Mapped[str]
    body:                Mapped[str] = mapped_column(Text)
    status:              Mapped[str]
    provider_message_id: Mapped[str | None]
    error_code:          Mapped[str | None]
    error_message:       Mapped[str | None] = mapped_column(Text)
    created_at:          Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_email_messages_household_step", "household_id", "reminder_step"),
    )


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Query builders (pure; no I/O so they can be compiled in tests)
# ──────────────────────────────────────────────────────────────────────

def _now(now: datetime | None = None) -> datetime:
    return now or datetime.now(tz=UTC)


def _lease_seconds(lease_seconds: int | None) -> int:
    return settings.REMINDER_CLAIM_LEASE_SECONDS if lease_seconds is None else lease_seconds


def claimable_clause(now: datetime, lease_seconds: int):
    """Rows that may be claimed: active, or processing with an expired lease."""
    stale_before = now - timedelta(seconds=lease_seconds)
    return or_(
        ReminderState.status == STATUS_ACTIVE,
        and_(
            ReminderState.status == STATUS_PROCESSING,
            ReminderState.claimed_at.is_not(None),
            ReminderState.claimed_at <= stale_before,
        ),
    )


def due_reminders_stmt(now: datetime, limit: int, lease_seconds: int):
    return (
        select(ReminderState)
        .where(
            claimable_clause(now, lease_seconds),
            ReminderState.next_reminder_at.is_not(None),
            ReminderState.next_reminder_at <= now,
        )
        .options(selectinload(ReminderState.household).selectinload(Household.event))
        .order_by(ReminderState.next_reminder_at.asc())
        .limit(limit)
    )


def conditional_update_stmt(reminder_id: str, values: dict[str, Any], *criteria):
    return (
        update(ReminderState)
        .where(ReminderState.id == reminder_id, *criteria)
        .values(**values, updated_at=func.now())
        .returning(ReminderState.id)
    )


# ──────────────────────────────────────────────────────────────────────
# 6. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 6.1 Due reminders ----------------------------------------------------
async def fetch_due_reminders(
    limit: int = 5,
    now: datetime | None = None,
    lease_seconds: int | None = None,
) -> list[ReminderState]:
    """Oldest-due first, with household + event loaded in the same call."""
    stmt = due_reminders_stmt(_now(now), limit, _lease_seconds(lease_seconds))
    async for s in get_session():
        res = await s.execute(stmt)
        return list(res.scalars().all())
    return []


async def list_due_reminders(
    now: datetime | None = None,
    lease_seconds: int | None = None,
) -> list[dict]:
    now = _now(now)
    stmt = (
        select(
            ReminderState.id,
            ReminderState.household_id,
            ReminderState.reminder_step,
            ReminderState.next_reminder_at,
        )
        .where(
            claimable_clause(now, _lease_seconds(lease_seconds)),
            ReminderState.next_reminder_at.is_not(None),
            ReminderState.next_reminder_at <= now,
        )
        .order_by(ReminderState.next_reminder_at.asc())
    )
    async for s in get_session():
        res = await s.execute(stmt)
        return [dict(row._mapping) for row in res]
    return []


async def count_reminders_by_status() -> dict[str, int]:
    stmt = select(ReminderState.status, func.count()).group_by(ReminderState.status)
    async for s in get_session():
        res = await s.execute(stmt)
        return {status: count for status, count in res.all()}
    return {}


# 6.2 Conditional state writes -----------------------------------------
async def conditional_update_reminder(
    reminder_id: str,
    values: dict[str, Any],
    expected_status: str | None = None,
    where: Sequence[Any] = (),
) -> list[str]:
    """UPDATE one reminder only if it still matches the expected state.

    Returns the ids of rows actually updated: an empty list means somebody
    else got there first (or the row is gone).
    """
    criteria = list(where)
    if expected_status is not None:
        criteria.append(ReminderState.status == expected_status)
    stmt = conditional_update_stmt(reminder_id, values, *criteria)
    async for s in get_session():
        res = await s.execute(stmt)
        await s.commit()
        return list(res.scalars().all())
    return []


async def claim_reminder(
    reminder_id: str,
    step: int | None = None,
    now: datetime | None = None,
    lease_seconds: int | None = None,
) -> bool:
    """Claim a due reminder for this run.

    Passing the *step* the caller selected makes a stale snapshot lose: a row
    another run already advanced no longer matches and is left alone.
    """
    now = _now(now)
    criteria = [
        claimable_clause(now, _lease_seconds(lease_seconds)),
        ReminderState.next_reminder_at <= now,
    ]
    if step is not None:
        criteria.append(ReminderState.reminder_step == step)
    updated = await conditional_update_reminder(
        reminder_id,
        {"status": STATUS_PROCESSING, "claimed_at": now},
        where=criteria,
    )
    return bool(updated)


def _held_by(claimed_at: datetime | None) -> list:
    # claimed_at doubles as the claim token; a re-claim under the lease changes it.
    return [] if claimed_at is None else [ReminderState.claimed_at == claimed_at]


async def release_reminder(reminder_id: str, claimed_at: datetime | None = None) -> bool:
    updated = await conditional_update_reminder(
        reminder_id,
        {"status": STATUS_ACTIVE, "claimed_at": None},
        expected_status=STATUS_PROCESSING,
        where=_held_by(claimed_at),
    )
    return bool(updated)


async def advance_reminder(
    reminder_id: str,
    step: int,
    next_at: datetime,
    claimed_at: datetime | None = None,
) -> bool:
    updated = await conditional_update_reminder(
        reminder_id,
        {
            "status": STATUS_ACTIVE,
            "reminder_step": step,
            "next_reminder_at": next_at,
            "claimed_at": None,
        },
        expected_status=STATUS_PROCESSING,
        where=_held_by(claimed_at),
    )
    return bool(updated)


async def complete_reminder(reminder_id: str, claimed_at: datetime | None = None) -> bool:
    updated = await conditional_update_reminder(
        reminder_id,
        {"status": STATUS_COMPLETED, "next_reminder_at": None, "claimed_at": None},
        expected_status=STATUS_PROCESSING,
        where=_held_by(claimed_at),
    )
    return bool(updated)


# 6.3 Message log ------------------------------------------------------
async def insert_sms_message(
    household_id: str,
    to_e164: str,
    body: str,
    status: str,
    reminder_step: int | None = None,
    provider_message_id: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> str:
    msg = SmsMessage(
        household_id=household_id,
        reminder_step=reminder_step,
        to_e164=to_e164,
        body=body,
        status=status,
        provider_message_id=provider_message_id,
        error_code=error_code,
        error_message=error_message,
    )
    async for s in get_session():
        s.add(msg)
        await s.commit()
    return msg.id


async def insert_email_message(
    household_id: str,
    reminder_step: int,
    to_email: str,
    subject: str,
    body: str,
    status: str,
    provider_message_id: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> str:
    msg = EmailMessage(
        household_id=household_id,
        reminder_step=reminder_step,
        to_email=to_email,
        subject=subject,
        body=body,
        status=status,
        provider_message_id=provider_message_id,
        error_code=error_code,
        error_message=error_message,
    )
    async for s in get_session():
        s.add(msg)
        await s.commit()
    return msg.id


async def email_message_exists(household_id: str, reminder_step: int) -> bool:
    stmt = select(
        exists().where(
            EmailMessage.household_id == household_id,
            EmailMessage.reminder_step == reminder_step,
        )
    )
    async for s in get_session():
        return bool(await s.scalar(stmt))
    return False


# 6.4 Guest-import producer --------------------------------------------
def reminder_at(event_date: date, days_before: int) -> datetime:
    """UTC midnight of *event_date* minus *days_before* days."""
    midnight = datetime(event_date.year, event_date.month, event_date.day, tzinfo=UTC)
    return midnight - timedelta(days=days_before)


def first_reminder_at(event_date: date | None, days_before: int = FIRST_REMINDER_STEP) -> datetime | None:
    if event_date is None:
        return None
    return reminder_at(event_date, days_before)


async def reset_household_reminders(
    household_ids: Iterable[str],
    event_date: date | None,
) -> list[str]:
    """Replace reminder rows for freshly (re-)imported households.

    Existing rows are deleted and one ``active`` row at step 21 is inserted per
    household.  Returns the new reminder ids.
    """
    ids = list(household_ids)
    if not ids:
        return []
    next_at = first_reminder_at(event_date)
    rows = [
        ReminderState(
            household_id=hid,
            reminder_step=FIRST_REMINDER_STEP,
            status=STATUS_ACTIVE,
            next_reminder_at=next_at,
        )
        for hid in ids
    ]
    async for s in get_session():
        await s.execute(delete(ReminderState).where(ReminderState.household_id.in_(ids)))
        s.add_all(rows)
        await s.commit()
    return [r.id for r in rows]


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
