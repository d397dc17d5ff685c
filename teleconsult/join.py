"""Join-time gate for the video room: resolves a room token and decides access."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from teleconsult import bookings, rooms
from teleconsult.bookings import CONFIRMED, as_datetime, humanize, professional_label
from teleconsult.config import settings
from teleconsult.store import get_store

logger = logging.getLogger(__name__)

INVALID = {"status": "invalid"}


def join_info(token: Optional[str], now: Optional[datetime] = None) -> dict:
    """
    Classify access for a room token:
      too_early  now < startsAt
      ok         startsAt <= now <= endsAt + grace
      finished   past the grace period
      invalid    unknown token, missing booking, not confirmed, no timestamps
    """
    if not token:
        return dict(INVALID)

    try:
        store = get_store()
        link = store.get(rooms.COLLECTION, token)
        if link is None:
            logger.info("[joinInfo] Token not found: %s", token)
            return dict(INVALID)

        booking_id = link.get("bookingId")
        if not booking_id:
            logger.info("[joinInfo] No bookingId for token: %s", token)
            return dict(INVALID)

        booking = store.get(bookings.COLLECTION, booking_id)
        if booking is None:
            logger.info("[joinInfo] Booking not found: %s", booking_id)
            return dict(INVALID)
        if booking.get("status") != CONFIRMED:
            logger.info("[joinInfo] Booking %s not confirmed: %s", booking_id, booking.get("status"))
            return dict(INVALID)

        starts_at = as_datetime(booking.get("startsAt"))
        ends_at = as_datetime(booking.get("endsAt"))
        if not starts_at or not ends_at:
            logger.info("[joinInfo] Missing timestamps for booking %s", booking_id)
            return dict(INVALID)

        now = now or datetime.now(timezone.utc)
        if now < starts_at:
            return {
                "status": "too_early",
                "startsAtHuman": humanize(starts_at),
                "professionalName": professional_label(booking),
            }
        if now <= ends_at + timedelta(minutes=settings.join_grace_minutes):
            return {
                "status": "ok",
                "bookingId": booking_id,
                "roomPath": f"/room/{booking_id}",
            }
        return {"status": "finished"}
    except Exception:
        logger.exception("[joinInfo] Error processing token %s", token)
        return dict(INVALID)
