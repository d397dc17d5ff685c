"""
Phone index: HMAC-hashed phone numbers mapped to user ids, kept in sync
with users/{uid}.phoneNumber and patients/{uid}.phone, plus the
checkPhoneIndex lookup used by the sign-up form.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from typing import Optional

from teleconsult.config import settings
from teleconsult.store import get_store

logger = logging.getLogger(__name__)

COLLECTION = "phone_index"

# Source collection -> phone field
PHONE_FIELDS = {"users": "phoneNumber", "patients": "phone"}


class InvalidArgument(ValueError):
    """Rejected callable input (maps to INVALID_ARGUMENT)."""


def normalize_phone(value: str) -> str:
    """Keep digits only, always prefixed with +."""
    return "+" + re.sub(r"\D", "", (value or "").strip())


def hash_phone(phone: str, secret: Optional[str] = None) -> str:
    key = (settings.phone_index_secret if secret is None else secret).encode()
    return hmac.new(key, phone.encode(), hashlib.sha256).hexdigest()


def upsert_phone_index(uid: str, phone: str) -> None:
    if not phone:
        return
    store = get_store()
    store.set(
        COLLECTION,
        hash_phone(normalize_phone(phone)),
        {"uid": uid, "updatedAt": store.server_timestamp()},
        merge=True,
    )


def delete_phone_index(phone: str) -> None:
    if not phone:
        return
    try:
        get_store().delete(COLLECTION, hash_phone(normalize_phone(phone)))
    except Exception as exc:
        logger.warning("Phone index delete failed: %s", exc)


def sync_phone_index(
    collection: str, uid: str, before: Optional[dict], after: Optional[dict]
) -> None:
    """Mirror a users/ or patients/ write into the phone index."""
    field = PHONE_FIELDS[collection]
    before_phone = (before or {}).get(field)
    after_phone = (after or {}).get(field)

    if before_phone and before_phone != after_phone:
        delete_phone_index(before_phone)
    if after_phone:
        upsert_phone_index(uid, after_phone)


def check_phone_index(phone: Optional[str]) -> dict:
    """Return {"exists": bool} for a patient phone number in E.164 form."""
    phone = (phone or "").strip()
    if not phone.startswith("+") or len(phone) < 8:
        raise InvalidArgument("Numéro invalide")

    store = get_store()
    users = store.find(
        "users",
        [("type", "==", "patient"), ("phoneNumber", "==", phone)],
        limit=1,
    )
    if users:
        return {"exists": True}

    patients = store.find("patients", [("phone", "==", phone)], limit=1)
    return {"exists": bool(patients)}
