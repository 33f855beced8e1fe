"""Telnyx SMS adapter: one message per call, no retry, no batching."""

from __future__ import annotations

import logging

import telnyx
from telnyx.error import TelnyxError

from config import settings

_LOGGER = logging.getLogger(__name__)


class SmsConfigError(RuntimeError):
    """Telnyx credentials or sending number are not configured."""


class SmsSendError(RuntimeError):
    """The provider rejected the message."""


def resolve_send_to(phone: str) -> str:
    """Redirect every send to DEV_FORCE_TO outside production."""
    if (settings.APP_ENV or "").lower() == "dev" and settings.DEV_FORCE_TO:
        return settings.DEV_FORCE_TO
    return phone


def send_sms(to: str, body: str) -> str:
    """Send *body* to *to* and return the provider message id."""
    if not settings.TELNYX_API_KEY or not settings.TELNYX_FROM_NUMBER:
        raise SmsConfigError("TELNYX_API_KEY / TELNYX_FROM_NUMBER not set")
    telnyx.api_key = settings.TELNYX_API_KEY
    try:
        msg = telnyx.Message.create(from_=settings.TELNYX_FROM_NUMBER, to=to, text=body)
    except TelnyxError as exc:
        raise SmsSendError(f"Telnyx failed: {exc}") from exc
    _LOGGER.info("SMS queued with provider id=%s", msg.id)
    return str(msg.id)
