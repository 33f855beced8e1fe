"""Pydantic models returned by the dispatcher and the HTTP entry points.

Kept free of FastAPI and database imports so the Celery task, the cron
script and tests can share them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ReminderStatus = Literal["active", "processing", "completed"]
Tier = Literal["standard", "premium"]


class DispatchResult(BaseModel):
    """Outcome of one reminder within a dispatch batch.

    ``sent=False`` without ``error`` is a benign outcome (lost claim race or
    no reachable channel); ``error`` is only set on the failure path.
    """

    reminder_id: str
    sent: bool
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class DueReminder(BaseModel):
    id: str
    household_id: str
    reminder_step: int
    next_reminder_at: Optional[datetime] = None


class HealthReply(BaseModel):
    ok: bool = True
    count: int
    data: List[DueReminder] = Field(default_factory=list)
    by_status: Dict[str, int] = Field(default_factory=dict)


class RunOnceReply(BaseModel):
    ok: bool = True
    processed: List[DispatchResult] = Field(default_factory=list)
