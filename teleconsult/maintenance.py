"""Duplicate booking cleanup (temporary checkout bookings vs. paid copies)."""

from __future__ import annotations

import logging

from teleconsult import bookings
from teleconsult.bookings import as_datetime
from teleconsult.store import get_store

logger = logging.getLogger(__name__)


def _keys(doc: dict) -> list[str]:
    keys = []
    if doc.get("paymentRef"):
        keys.append(f"pay:{doc['paymentRef']}")
    starts_at = as_datetime(doc.get("startsAt"))
    if doc.get("patientId") and doc.get("professionalId") and starts_at:
        keys.append(f"tuple:{doc['patientId']}:{doc['professionalId']}:{starts_at.isoformat()}")
    return keys


def find_duplicate_bookings() -> list[tuple[str, str, str]]:
    """
    Return (key, kept temp id, duplicate id) for every temp_ booking that
    shares a payment ref or patient/professional/startsAt with a normal one.
    """
    pairs: dict[str, dict[str, str]] = {}
    for doc_id, doc in get_store().find(bookings.COLLECTION):
        kind = "temp" if doc_id.startswith("temp_") or doc.get("isTemp") is True else "normal"
        for key in _keys(doc):
            pairs.setdefault(key, {})[kind] = doc_id

    return [
        (key, pair["temp"], pair["normal"])
        for key, pair in pairs.items()
        if "temp" in pair and "normal" in pair
    ]


def cleanup_duplicate_bookings(dry_run: bool = False) -> int:
    store = get_store()
    deleted: set[str] = set()
    for key, kept, duplicate in find_duplicate_bookings():
        if duplicate in deleted:
            continue
        logger.info("Duplicate for %s: keeping %s, deleting %s", key, kept, duplicate)
        if not dry_run:
            store.delete(bookings.COLLECTION, duplicate)
        deleted.add(duplicate)
    return len(deleted)
