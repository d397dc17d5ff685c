"""
Document store for bookings, room links, notifications and the phone index.

Two backends share one small interface:

  - MemoryStore: dict-backed, used for local development and tests. It also
    plays the role of Firestore document triggers by calling registered
    listeners with (collection, doc_id, before, after) after every write.
  - FirestoreStore: firebase-admin client for production. Document triggers
    are delivered by the platform to POST /hooks/{collection}/{doc_id}.

Nested maps are deep-merged on set(merge=True), matching Firestore's merge
semantics, so callers write flag patches as {"notify": {"sent": {...}}}.
"""

from __future__ import annotations

import copy
import logging
import operator
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from teleconsult.config import settings

logger = logging.getLogger(__name__)

Filter = tuple[str, str, Any]
Listener = Callable[[str, str, Optional[dict], Optional[dict]], None]
Patcher = Callable[[Optional[dict]], Optional[dict]]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
}


def deep_merge(target: dict, patch: dict) -> dict:
    """Merge patch into target in place; nested dicts merge, anything else replaces."""
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def field_value(doc: Optional[dict], path: str) -> Any:
    """Read a dotted field path ("notify.sent.initial") from a document."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryStore:
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def server_timestamp(self) -> datetime:
        return datetime.now(timezone.utc)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        with self._lock:
            before, after = self._write(collection, doc_id, data, merge)
        self._notify(collection, doc_id, before, after)

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            before = self._collections.get(collection, {}).pop(doc_id, None)
        if before is not None:
            self._notify(collection, doc_id, before, None)

    def find(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> list[tuple[str, dict]]:
        filters = list(filters)
        with self._lock:
            matches = []
            for doc_id, doc in self._collections.get(collection, {}).items():
                if all(_matches(doc, f) for f in filters):
                    matches.append((doc_id, copy.deepcopy(doc)))
                    if limit is not None and len(matches) >= limit:
                        break
            return matches

    def transact(self, collection: str, doc_id: str, fn: Patcher) -> Optional[dict]:
        """Atomically read a document, compute a patch with fn and merge it."""
        with self._lock:
            current = self.get(collection, doc_id)
            patch = fn(current)
            if not patch:
                return None
            before, after = self._write(collection, doc_id, patch, merge=True)
        self._notify(collection, doc_id, before, after)
        return patch

    def _write(self, collection: str, doc_id: str, data: dict, merge: bool):
        docs = self._collections.setdefault(collection, {})
        before = copy.deepcopy(docs.get(doc_id))
        if merge and before is not None:
            after = deep_merge(copy.deepcopy(before), data)
        else:
            after = deep_merge({}, data)
        docs[doc_id] = after
        return before, copy.deepcopy(after)

    def _notify(self, collection: str, doc_id: str, before, after) -> None:
        for listener in self._listeners:
            try:
                listener(collection, doc_id, before, after)
            except Exception:
                logger.exception("Listener failed for %s/%s", collection, doc_id)


def _matches(doc: dict, flt: Filter) -> bool:
    path, op, expected = flt
    value = field_value(doc, path)
    if value is None:
        return False
    try:
        return _OPERATORS[op](value, expected)
    except TypeError:
        return False


# ---------------------------------------------------------------------------
# Firestore backend
# ---------------------------------------------------------------------------


class FirestoreStore:
    def __init__(self, client=None) -> None:
        # Import here so the memory backend works without Google credentials
        from firebase_admin import firestore  # noqa: PLC0415

        self._firestore = firestore
        self._db = client or firestore.client(firebase_app())

    def server_timestamp(self):
        return self._firestore.SERVER_TIMESTAMP

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        snap = self._db.collection(collection).document(doc_id).get()
        return snap.to_dict() if snap.exists else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._db.collection(collection).document(doc_id).set(data, merge=merge)

    def add(self, collection: str, data: dict) -> str:
        _, ref = self._db.collection(collection).add(data)
        return ref.id

    def delete(self, collection: str, doc_id: str) -> None:
        self._db.collection(collection).document(doc_id).delete()

    def find(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> list[tuple[str, dict]]:
        from google.cloud.firestore_v1.base_query import FieldFilter  # noqa: PLC0415

        query = self._db.collection(collection)
        for path, op, value in filters:
            query = query.where(filter=FieldFilter(path, op, value))
        if limit is not None:
            query = query.limit(limit)
        return [(snap.id, snap.to_dict()) for snap in query.stream()]

    def transact(self, collection: str, doc_id: str, fn: Patcher) -> Optional[dict]:
        ref = self._db.collection(collection).document(doc_id)

        @self._firestore.transactional
        def _run(transaction):
            snap = ref.get(transaction=transaction)
            patch = fn(snap.to_dict() if snap.exists else None)
            if patch:
                transaction.set(ref, patch, merge=True)
            return patch or None

        return _run(self._db.transaction())


def firebase_app():
    import firebase_admin  # noqa: PLC0415
    from firebase_admin import credentials  # noqa: PLC0415

    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = (
            credentials.Certificate(settings.firebase_credentials)
            if settings.firebase_credentials
            else credentials.ApplicationDefault()
        )
        return firebase_admin.initialize_app(cred)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_store: MemoryStore | FirestoreStore | None = None


def get_store() -> MemoryStore | FirestoreStore:
    global _store
    if _store is None:
        if settings.store_backend == "firestore":
            _store = FirestoreStore()
        else:
            _store = MemoryStore()
        logger.info("Document store initialised (%s)", type(_store).__name__)
    return _store


def set_store(store: MemoryStore | FirestoreStore | None) -> None:
    """Swap the process-wide store (None re-reads the configured backend)."""
    global _store
    _store = store
