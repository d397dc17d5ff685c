"""
SMS channel, the last link of the notification chain.

With Twilio credentials configured, messages go out through Twilio.
Otherwise the channel is a log-only stub that reports success, so the chain
always terminates.
"""

from __future__ import annotations

import logging

from twilio.rest import Client

from teleconsult.config import settings

logger = logging.getLogger(__name__)


def _client() -> Client:
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def _twilio_configured() -> bool:
    return bool(
        settings.twilio_account_sid
        and settings.twilio_auth_token
        and settings.twilio_phone_number
    )


def send_sms(to: str, body: str) -> bool:
    """Send an SMS. Returns True on success, False on failure."""
    if not _twilio_configured():
        logger.info("[SMS Fallback] to=%s text=%s", to, body)
        return True

    if not to or not to.startswith("+"):
        logger.warning("Invalid phone number for SMS: %s", to)
        return False

    try:
        msg = _client().messages.create(
            to=to,
            from_=settings.twilio_phone_number,
            body=body,
        )
        logger.info("SMS sent to %s, SID %s", to, msg.sid)
        return True
    except Exception as exc:
        logger.error("SMS failed to %s: %s", to, exc)
        return False
