"""Scheduled reminder dispatch task."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from celery.signals import after_setup_logger

from app.celery_app import celery_app
from app.logging_utils import RedactFilter
from app.services.dispatcher import process_due_reminders
from app.types.reminder_contract import DispatchResult
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


@after_setup_logger.connect
def _install_redaction(logger, **kwargs):  # noqa: ANN001
    logger.addFilter(RedactFilter())


async def run_batch(limit: int) -> List[DispatchResult]:
    """One dispatch batch inside its own event loop; pooled connections die with it."""
    try:
        return await process_due_reminders(limit)
    finally:
        await db.dispose_engine()


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self) -> list[dict]:  # noqa: D401
    """Dispatch one batch of due reminders.

    No Celery retry: whatever fails is released back to ``active`` and the
    next beat tick picks it up again.
    """
    missing = settings.dispatch_missing()
    if missing:
        _LOGGER.error("dispatch_due: %s not set; skipping run", ", ".join(missing))
        return []

    try:
        results = asyncio.run(run_batch(settings.REMINDER_BATCH_SIZE))
    except Exception:  # noqa: BLE001
        _LOGGER.exception("dispatch_due: batch aborted")
        return []
    return [r.as_dict() for r in results]
