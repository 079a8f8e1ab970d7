"""Document store adapter.

Collections of JSON documents addressed by slash paths
(``lineupSessions/{id}/contestantJoinTimes/{userId}``), kept in a single
``store_document`` table. Offers the primitives the speed-dating and lineup
code relies on: point reads, filtered collection queries, atomic write
batches, optimistic transactions and per-document change subscriptions.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select

from .config import STORE_TRANSACTION_MAX_ATTEMPTS
from .models import StoreDocument

logger = logging.getLogger(__name__)

_TS_KEY = "$ts"
_MISSING = object()


class StoreError(Exception):
    pass


class DocumentNotFound(StoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class TransactionConflict(StoreError):
    pass


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo) -> "_ServerTimestamp":
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    amount: int | float = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def doc_path(*parts: Any) -> str:
    return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))


def split_path(path: str) -> tuple[str, str]:
    segments = path.split("/")
    if len(segments) < 2 or len(segments) % 2 != 0 or not all(segments):
        raise ValueError(f"Not a document path: {path}")
    parent, _, doc_id = path.rpartition("/")
    return parent, doc_id


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_TS_KEY: value.astimezone(timezone.utc).isoformat()}
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _TS_KEY in value:
            return datetime.fromisoformat(value[_TS_KEY])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


def _resolve(value: Any, existing: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        base = existing if isinstance(existing, (int, float)) and not isinstance(existing, bool) else 0
        return base + value.amount
    if isinstance(value, dict):
        prior = existing if isinstance(existing, dict) else {}
        return {k: _resolve(v, prior.get(k), now) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve(v, None, now) for v in value]
    return value


def _deep_merge(base: dict[str, Any], patch: dict[str, Any], now: datetime) -> dict[str, Any]:
    out = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value, now)
        else:
            out[key] = _resolve(value, out.get(key), now)
    return out


def _apply_field_updates(base: dict[str, Any], fields: dict[str, Any], now: datetime) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for dotted, value in fields.items():
        keys = dotted.split(".")
        target = out
        for key in keys[:-1]:
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            target = child
        target[keys[-1]] = _resolve(value, target.get(keys[-1]), now)
    return out


def _lookup(data: dict[str, Any] | None, dotted: str, default: Any = None) -> Any:
    current: Any = data
    for key in dotted.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


@dataclass
class DocumentSnapshot:
    path: str
    data: dict[str, Any] | None
    version: int = 0

    @property
    def id(self) -> str:
        return self.path.rpartition("/")[2]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field: str, default: Any = None) -> Any:
        return _lookup(self.data, field, default)

    def to_dict(self) -> dict[str, Any] | None:
        return copy.deepcopy(self.data) if self.data is not None else None


def _snapshot(row: StoreDocument) -> DocumentSnapshot:
    return DocumentSnapshot(path=row.path, data=_decode(row.data), version=int(row.version))


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
    "not-in": lambda a, b: a not in b,
    "array-contains": lambda a, b: isinstance(a, list) and b in a,
}


class Query:
    """Filtered view over one collection, evaluated when ``get`` is called.

    Documents missing a filtered or ordered field never match, the same as
    the hosted document databases this mirrors.
    """

    def __init__(
        self,
        reader: Callable[[str], list[DocumentSnapshot]],
        collection: str,
        observer: Callable[["Query", list[DocumentSnapshot]], None] | None = None,
    ) -> None:
        self._reader = reader
        self._collection = collection
        self._observer = observer
        self._filters: list[tuple[str, str, Any]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: int | None = None

    def _clone(self) -> "Query":
        q = Query(self._reader, self._collection, self._observer)
        q._filters = list(self._filters)
        q._order = list(self._order)
        q._limit = self._limit
        return q

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        q = self._clone()
        q._filters.append((field, op, value))
        return q

    def order_by(self, field: str, direction: str = "asc") -> "Query":
        q = self._clone()
        q._order.append((field, direction.lower() == "desc"))
        return q

    def limit(self, n: int) -> "Query":
        q = self._clone()
        q._limit = max(0, int(n))
        return q

    def _matches(self, snap: DocumentSnapshot) -> bool:
        for field, op, value in self._filters:
            actual = snap.get(field, _MISSING)
            if actual is _MISSING:
                return False
            try:
                if not _OPERATORS[op](actual, value):
                    return False
            except TypeError:
                return False
        return True

    @property
    def collection_path(self) -> str:
        return self._collection

    def evaluate(self, candidates: list[DocumentSnapshot]) -> list[DocumentSnapshot]:
        docs = [d for d in candidates if self._matches(d)]
        for field, _ in self._order:
            docs = [d for d in docs if d.get(field, _MISSING) is not _MISSING]
        for field, descending in reversed(self._order):
            docs.sort(key=lambda d, f=field: d.get(f), reverse=descending)
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    def get(self) -> list[DocumentSnapshot]:
        docs = self.evaluate(self._reader(self._collection))
        if self._observer is not None:
            self._observer(self, docs)
        return docs


@dataclass
class _Write:
    kind: str
    path: str
    data: dict[str, Any] | None = None
    merge: bool = False


class _WriteBuffer:
    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._writes: list[_Write] = []

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        split_path(path)
        self._writes.append(_Write("set", path, copy.deepcopy(data), merge))

    def update(self, path: str, fields: dict[str, Any]) -> None:
        split_path(path)
        self._writes.append(_Write("update", path, copy.deepcopy(fields)))

    def delete(self, path: str) -> None:
        split_path(path)
        self._writes.append(_Write("delete", path))

    def __len__(self) -> int:
        return len(self._writes)


class WriteBatch(_WriteBuffer):
    def commit(self) -> None:
        if self._writes:
            self._store._commit(self._writes, {})
        self._writes = []


class Transaction(_WriteBuffer):
    """Reads record document versions and query results; commit fails if a
    read document moved or a query would now match a different set."""

    def __init__(self, store: "DocumentStore") -> None:
        super().__init__(store)
        self._reads: dict[str, int] = {}
        self._queries: list[tuple[Query, set[str]]] = []

    def get(self, path: str) -> DocumentSnapshot:
        snap = self._store.get(path)
        self._reads.setdefault(path, snap.version)
        return snap

    def _observe(self, query: Query, docs: list[DocumentSnapshot]) -> None:
        for d in docs:
            self._reads.setdefault(d.path, d.version)
        self._queries.append((query, {d.path for d in docs}))

    def collection(self, collection: str) -> Query:
        return Query(self._store._read_collection, collection, self._observe)


class DocumentStore:
    def __init__(
        self,
        session_factory,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = STORE_TRANSACTION_MAX_ATTEMPTS,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or utcnow
        self._max_attempts = max(1, int(max_attempts))
        self._listeners: dict[str, list[Callable[[DocumentSnapshot], None]]] = {}
        self._listeners_lock = threading.Lock()
        self._commit_lock = threading.RLock()

    def now(self) -> datetime:
        return self._clock()

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def get(self, path: str) -> DocumentSnapshot:
        split_path(path)
        with self._session_factory() as db:
            row = db.get(StoreDocument, path)
            if row is None:
                return DocumentSnapshot(path=path, data=None, version=0)
            return DocumentSnapshot(path=path, data=_decode(row.data), version=int(row.version))

    def _read_collection(self, collection: str) -> list[DocumentSnapshot]:
        with self._session_factory() as db:
            rows = db.execute(select(StoreDocument).where(StoreDocument.parent == collection)).scalars().all()
            return [_snapshot(r) for r in rows]

    def collection(self, collection: str) -> Query:
        return Query(self._read_collection, collection)

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        batch = self.batch()
        batch.set(path, data, merge=merge)
        batch.commit()

    def update(self, path: str, fields: dict[str, Any]) -> None:
        batch = self.batch()
        batch.update(path, fields)
        batch.commit()

    def delete(self, path: str) -> None:
        batch = self.batch()
        batch.delete(path)
        batch.commit()

    def add(self, collection: str, data: dict[str, Any]) -> str:
        new_id = self.new_id()
        self.set(doc_path(collection, new_id), data)
        return new_id

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def delete_collection(self, collection: str) -> int:
        docs = self._read_collection(collection)
        if not docs:
            return 0
        batch = self.batch()
        for d in docs:
            batch.delete(d.path)
        batch.commit()
        return len(docs)

    def run_transaction(self, fn: Callable[[Transaction], Any], max_attempts: int | None = None) -> Any:
        attempts = max(1, int(max_attempts or self._max_attempts))
        last_exc: TransactionConflict | None = None
        for attempt in range(1, attempts + 1):
            txn = Transaction(self)
            result = fn(txn)
            try:
                self._commit(txn._writes, txn._reads, txn._queries)
                return result
            except TransactionConflict as exc:
                last_exc = exc
                logger.info("[STORE] transaction conflict (attempt %s/%s): %s", attempt, attempts, exc)
        raise TransactionConflict(f"Transaction failed after {attempts} attempts") from last_exc

    def subscribe(self, path: str, callback: Callable[[DocumentSnapshot], None]) -> Callable[[], None]:
        split_path(path)
        with self._listeners_lock:
            self._listeners.setdefault(path, []).append(callback)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                callbacks = self._listeners.get(path) or []
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(path, None)

        return _unsubscribe

    def _commit(
        self,
        writes: list[_Write],
        reads: dict[str, int],
        queries: list[tuple[Query, set[str]]] | None = None,
    ) -> None:
        now = self.now()
        changed: list[str] = []
        with self._commit_lock:
            with self._session_factory() as db:
                for path, expected in reads.items():
                    row = db.execute(
                        select(StoreDocument.version).where(StoreDocument.path == path).with_for_update()
                    ).first()
                    current = int(row[0]) if row else 0
                    if current != expected:
                        raise TransactionConflict(f"{path} changed (expected v{expected}, found v{current})")

                for query, expected_paths in queries or []:
                    rows = db.execute(
                        select(StoreDocument).where(StoreDocument.parent == query.collection_path)
                    ).scalars().all()
                    found = {d.path for d in query.evaluate([_snapshot(r) for r in rows])}
                    if found != expected_paths:
                        raise TransactionConflict(f"query on {query.collection_path} now matches different documents")

                for w in writes:
                    row = db.get(StoreDocument, w.path)
                    if w.kind == "delete":
                        if row is not None:
                            db.delete(row)
                            db.flush()
                            changed.append(w.path)
                        continue

                    existing = _decode(row.data) if row is not None else None
                    if w.kind == "update":
                        if existing is None:
                            raise DocumentNotFound(w.path)
                        new_data = _apply_field_updates(existing, w.data or {}, now)
                    elif w.merge and existing is not None:
                        new_data = _deep_merge(existing, w.data or {}, now)
                    else:
                        new_data = _resolve(w.data or {}, None, now)

                    if row is None:
                        parent, doc_id = split_path(w.path)
                        db.add(
                            StoreDocument(
                                path=w.path,
                                parent=parent,
                                doc_id=doc_id,
                                data=_encode(new_data),
                                version=1,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                    else:
                        row.data = _encode(new_data)
                        row.version = int(row.version) + 1
                        row.updated_at = now
                    db.flush()
                    changed.append(w.path)
                db.commit()
        self._notify(changed)

    def _notify(self, paths: list[str]) -> None:
        seen: set[str] = set()
        for path in paths:
            if path in seen:
                continue
            seen.add(path)
            with self._listeners_lock:
                callbacks = list(self._listeners.get(path) or [])
            if not callbacks:
                continue
            snap = self.get(path)
            for cb in callbacks:
                try:
                    cb(snap)
                except Exception:
                    logger.exception("[STORE] listener failed for %s", path)


_default_store: DocumentStore | None = None
_default_lock = threading.Lock()


def get_store() -> DocumentStore:
    global _default_store
    if _default_store is None:
        with _default_lock:
            if _default_store is None:
                from .database import SessionLocal

                _default_store = DocumentStore(SessionLocal)
    return _default_store


def set_store(store: DocumentStore | None) -> None:
    global _default_store
    with _default_lock:
        _default_store = store
