import logging
import secrets

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.responses import JSONResponse, PlainTextResponse

import db
from app.logging_utils import configure_logging
from app.services.dispatcher import process_due_reminders
from app.types.reminder_contract import DueReminder, HealthReply, RunOnceReply
from app.utils import sms
from config import settings

TEST_SMS_BODY = "EventPrompt test SMS"

configure_logging()
_LOGGER = logging.getLogger("eventprompt_reminders.http")

app = FastAPI(title="eventprompt reminders worker")


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


def _error(message: str, status_code: int = 500, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


# --------------------------------------------
# Debug auth
# --------------------------------------------

def require_debug_token(token: str | None = Query(default=None)) -> None:
    if not settings.DEBUG_TOKEN:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Debug endpoints disabled")
    if not token or not secrets.compare_digest(token, settings.DEBUG_TOKEN):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized (missing/invalid token)")


# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/", response_class=PlainTextResponse)
async def root():
    return PlainTextResponse("eventprompt reminders worker ok")


@app.get("/health")
async def health():
    if not settings.database_url():
        return _error("Missing database configuration")
    try:
        rows = await db.list_due_reminders()
        by_status = await db.count_reminders_by_status()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("Health query failed")
        return _error("Reminder store query failed", detail=str(exc))

    reply = HealthReply(
        count=len(rows),
        data=[DueReminder(**row) for row in rows],
        by_status=by_status,
    )
    return JSONResponse(reply.model_dump(mode="json"))


@app.get("/debug/run-once", dependencies=[Depends(require_debug_token)])
async def run_once():
    if not settings.database_url():
        return _error("Missing database configuration")
    missing = settings.missing("TELNYX_API_KEY", "TELNYX_FROM_NUMBER")
    if missing:
        return _error("Missing Telnyx configuration", missing=missing)
    try:
        processed = await process_due_reminders(settings.DEBUG_BATCH_SIZE)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("Debug run failed")
        return _error("Reminder store query failed", detail=str(exc))
    reply = RunOnceReply(processed=processed)
    return JSONResponse(reply.model_dump(mode="json", exclude_none=True))


@app.get("/debug/send-test", dependencies=[Depends(require_debug_token)])
async def send_test():
    missing = settings.missing("TELNYX_API_KEY", "TELNYX_FROM_NUMBER", "TELNYX_TEST_TO")
    if missing:
        return _error("Missing Telnyx configuration", missing=missing)
    try:
        message_id = sms.send_sms(settings.TELNYX_TEST_TO, TEST_SMS_BODY)
    except sms.SmsSendError as exc:
        return _error(str(exc), status_code=status.HTTP_502_BAD_GATEWAY)
    return {"ok": True, "message": "Test SMS sent", "message_id": message_id}
