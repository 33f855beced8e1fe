"""Periodic scanner to send due reminders.
Run from a platform cron schedule instead of Celery beat:
    python -m app.scripts.scan_due_reminders
"""

from __future__ import annotations

import asyncio
import logging

from app.logging_utils import configure_logging
from app.workers.reminder import run_batch
from config import settings

_LOGGER = logging.getLogger("app.scripts.scan_due_reminders")


async def main(limit: int | None = None) -> list[dict]:
    missing = settings.dispatch_missing()
    if missing:
        _LOGGER.error("[CRON] %s not set; nothing to do", ", ".join(missing))
        return []
    results = await run_batch(limit or settings.REMINDER_BATCH_SIZE)
    for r in results:
        if r.error:
            _LOGGER.warning("[CRON] reminder %s failed: %s", r.reminder_id, r.error)
    return [r.as_dict() for r in results]


if __name__ == "__main__":  # pragma: no cover
    configure_logging()
    _LOGGER.info("[CRON] scan_due_reminders: job started")
    try:
        processed = asyncio.run(main())
        _LOGGER.info("[CRON] scan_due_reminders: job completed (%d reminders)", len(processed))
    except Exception:  # noqa: BLE001
        _LOGGER.exception("[CRON] scan_due_reminders: job failed")
