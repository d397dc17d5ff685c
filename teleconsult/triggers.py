"""
Document triggers: route writes on watched collections to their handlers.

With the memory store the handlers are installed as store listeners. With
Firestore, the platform delivers each document event to
POST /hooks/{collection}/{doc_id}, which calls dispatch() directly.
"""

from __future__ import annotations

import logging
from typing import Optional

from teleconsult import booking_hooks, bookings, email_bridge, phone_index
from teleconsult.bookings import as_datetime
from teleconsult.store import MemoryStore

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("startsAt", "endsAt")


def coerce_booking(doc: Optional[dict]) -> Optional[dict]:
    """Parse ISO timestamp strings from JSON event payloads."""
    if doc is None:
        return None
    doc = dict(doc)
    for name in TIMESTAMP_FIELDS:
        if isinstance(doc.get(name), str):
            doc[name] = as_datetime(doc[name])
    return doc


def dispatch(collection: str, doc_id: str, before: Optional[dict], after: Optional[dict]) -> None:
    if collection == bookings.COLLECTION:
        booking_hooks.on_booking_written(doc_id, coerce_booking(before), coerce_booking(after))
    elif collection in phone_index.PHONE_FIELDS:
        phone_index.sync_phone_index(collection, doc_id, before, after)
    elif collection == email_bridge.COLLECTION and before is None:
        email_bridge.on_notification_created(doc_id, after)


def install(store) -> None:
    if isinstance(store, MemoryStore):
        store.add_listener(dispatch)
        logger.info("Document triggers attached to the memory store")
