"""Room links (opaque join tokens) and patient phone lookup."""

from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib.parse import quote

from teleconsult.config import settings
from teleconsult.store import get_store

logger = logging.getLogger(__name__)

COLLECTION = "roomLinks"
TOKEN_LENGTH = 16


def ensure_room_token(booking_id: str) -> str:
    """Return the booking's room token, creating it on first use."""
    store = get_store()
    existing = store.find(COLLECTION, [("bookingId", "==", booking_id)], limit=1)
    if existing:
        return existing[0][0]

    token = secrets.token_urlsafe(TOKEN_LENGTH)[:TOKEN_LENGTH]
    store.set(COLLECTION, token, {
        "bookingId": booking_id,
        "createdAt": store.server_timestamp(),
    })
    logger.info("Room token created for booking %s", booking_id)
    return token


def join_link(token: str) -> str:
    return f"{settings.site_url.rstrip('/')}/join?t={quote(token, safe='')}"


def find_patient_phone(patient_id: Optional[str]) -> Optional[str]:
    """Look the patient's phone up in users/, then patients/."""
    if not patient_id:
        return None
    store = get_store()
    for collection in ("users", "patients"):
        doc = store.get(collection, patient_id)
        if doc is None:
            continue
        phone = str(doc.get("phoneNumber") or doc.get("phone") or "")
        if phone:
            return phone
    return None


def booking_phone(booking: dict) -> Optional[str]:
    return booking.get("patientPhone") or find_patient_phone(booking.get("patientId"))
