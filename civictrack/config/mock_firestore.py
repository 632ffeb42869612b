"""
In-memory Firestore client for local development and tests.

Mirrors the subset of the firebase_admin Firestore API that the services use:
collection/document references, where/order_by/limit/start_after queries, transactions,
write batches and on_snapshot listeners. Enabled with USE_MOCK_DB=true.

Transactions are serialized under a single re-entrant lock and their writes
are applied all-or-nothing at commit, which gives the same per-report
race-freedom the services rely on from Firestore's optimistic transactions.
When a persist path is configured, the whole store is written to JSON after
every commit so a dev server keeps its data across restarts.
"""

import copy
import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from google.api_core import exceptions as gcp_exceptions

logger = logging.getLogger(__name__)

ASCENDING = "ASCENDING"
DESCENDING = "DESCENDING"

_MISSING = object()


def _get_field(data: Dict, field_path: str) -> Any:
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_field(data: Dict, field_path: str, value: Any) -> None:
    parts = field_path.split(".")
    target = data
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _sort_key(value: Any) -> Tuple:
    # Firestore orders null before every other value.
    return (0, 0) if value is None else (1, value)


def _matches(field_value: Any, op_string: str, value: Any) -> bool:
    if field_value is _MISSING:
        return False
    try:
        if op_string == "==":
            return field_value == value
        if op_string == "!=":
            return field_value != value
        if op_string == "<":
            return field_value < value
        if op_string == "<=":
            return field_value <= value
        if op_string == ">":
            return field_value > value
        if op_string == ">=":
            return field_value >= value
        if op_string == "in":
            return field_value in value
        if op_string == "not-in":
            return field_value not in value
        if op_string == "array_contains":
            return isinstance(field_value, list) and value in field_value
        if op_string == "array_contains_any":
            return isinstance(field_value, list) and any(v in field_value for v in value)
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {op_string}")


class MockDocumentSnapshot:
    """Read-only view of a document at the time it was read."""

    def __init__(self, reference: "MockDocumentReference", data: Optional[Dict]):
        self.reference = reference
        self._data = copy.deepcopy(data) if data is not None else None

    @property
    def id(self) -> str:
        return self.reference.id

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict]:
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field_path: str) -> Any:
        if self._data is None:
            return None
        value = _get_field(self._data, field_path)
        return None if value is _MISSING else copy.deepcopy(value)


class MockDocumentReference:
    def __init__(self, client: "MockFirestoreClient", collection_id: str, document_id: str):
        self._client = client
        self._collection_id = collection_id
        self.id = document_id

    @property
    def path(self) -> str:
        return f"{self._collection_id}/{self.id}"

    @property
    def parent(self) -> "MockCollectionReference":
        return MockCollectionReference(self._client, self._collection_id)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, MockDocumentReference) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def get(self, field_paths=None, transaction=None) -> MockDocumentSnapshot:
        return self._client._snapshot(self)

    def set(self, document_data: Dict, merge: bool = False) -> None:
        self._client._commit([("set", self, document_data, merge)])

    def create(self, document_data: Dict) -> None:
        self._client._commit([("create", self, document_data, False)])

    def update(self, field_updates: Dict) -> None:
        self._client._commit([("update", self, field_updates, False)])

    def delete(self) -> None:
        self._client._commit([("delete", self, None, False)])


class MockWatch:
    """Handle returned by on_snapshot; call unsubscribe() to stop receiving events."""

    def __init__(self, client: "MockFirestoreClient", listener_id: str):
        self._client = client
        self._listener_id = listener_id

    def unsubscribe(self) -> None:
        self._client._remove_listener(self._listener_id)


class MockQuery:
    def __init__(
        self,
        client: "MockFirestoreClient",
        collection_id: str,
        filters: Tuple = (),
        orders: Tuple = (),
        limit_count: Optional[int] = None,
        cursor: Optional[Tuple[str, Dict]] = None,
    ):
        self._client = client
        self._collection_id = collection_id
        self._filters = filters
        self._orders = orders
        self._limit = limit_count
        self._cursor = cursor

    def _copy(self, **overrides) -> "MockQuery":
        params = {
            "filters": self._filters,
            "orders": self._orders,
            "limit_count": self._limit,
            "cursor": self._cursor,
        }
        params.update(overrides)
        return MockQuery(self._client, self._collection_id, **params)

    def where(self, field_path: Optional[str] = None, op_string: Optional[str] = None, value: Any = None, *, filter=None) -> "MockQuery":
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        return self._copy(filters=self._filters + ((field_path, op_string, value),))

    def order_by(self, field_path: str, direction: str = ASCENDING) -> "MockQuery":
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count: int) -> "MockQuery":
        return self._copy(limit_count=count)

    def start_after(self, document: MockDocumentSnapshot) -> "MockQuery":
        """Cursor: results begin after this snapshot's position in the ordered result."""
        return self._copy(cursor=(document.id, document.to_dict() or {}))

    def stream(self, transaction=None) -> Iterator[MockDocumentSnapshot]:
        return iter(self._client._run_query(self))

    def get(self, transaction=None) -> List[MockDocumentSnapshot]:
        return self._client._run_query(self)

    def on_snapshot(self, callback: Callable) -> MockWatch:
        return self._client._add_listener(self, callback)


class MockCollectionReference(MockQuery):
    def __init__(self, client: "MockFirestoreClient", collection_id: str):
        super().__init__(client, collection_id)
        self.id = collection_id

    def document(self, document_id: Optional[str] = None) -> MockDocumentReference:
        return MockDocumentReference(self._client, self.id, document_id or uuid.uuid4().hex[:20])

    def add(self, document_data: Dict, document_id: Optional[str] = None):
        doc_ref = self.document(document_id)
        doc_ref.create(document_data)
        return datetime.now(timezone.utc), doc_ref

    def list_documents(self) -> List[MockDocumentReference]:
        with self._client._lock:
            ids = list(self._client._collections.get(self.id, {}).keys())
        return [self.document(doc_id) for doc_id in ids]


class _WriteBuffer:
    def __init__(self, client: "MockFirestoreClient"):
        self._client = client
        self._ops: List[Tuple] = []

    def set(self, reference: MockDocumentReference, document_data: Dict, merge: bool = False) -> None:
        self._ops.append(("set", reference, document_data, merge))

    def create(self, reference: MockDocumentReference, document_data: Dict) -> None:
        self._ops.append(("create", reference, document_data, False))

    def update(self, reference: MockDocumentReference, field_updates: Dict) -> None:
        self._ops.append(("update", reference, field_updates, False))

    def delete(self, reference: MockDocumentReference) -> None:
        self._ops.append(("delete", reference, None, False))


class MockWriteBatch(_WriteBuffer):
    def commit(self) -> None:
        self._client._commit(self._ops)
        self._ops = []


class MockTransaction(_WriteBuffer):
    """Buffers writes until the owning run_transaction call commits them."""

    def get(self, ref_or_query):
        if isinstance(ref_or_query, MockDocumentReference):
            return iter([ref_or_query.get()])
        return ref_or_query.stream()


class MockFirestoreClient:
    """
    Drop-in stand-in for firestore.Client backed by plain dicts.

    Collections are dicts of document id → document data. All reads return
    deep copies so callers can never mutate stored state without a write.
    """

    def __init__(self, persist_path: Optional[str] = None):
        self._collections: Dict[str, Dict[str, Dict]] = {}
        self._lock = threading.RLock()
        self._listeners: Dict[str, Tuple[MockQuery, Callable]] = {}
        self._failing_collections: set = set()
        self._persist_path = persist_path
        if persist_path and os.path.exists(persist_path):
            self._load(persist_path)

    # Public client API

    def collection(self, collection_id: str) -> MockCollectionReference:
        return MockCollectionReference(self, collection_id)

    def collections(self) -> List[MockCollectionReference]:
        with self._lock:
            return [MockCollectionReference(self, name) for name in self._collections]

    def batch(self) -> MockWriteBatch:
        return MockWriteBatch(self)

    def transaction(self, **kwargs) -> MockTransaction:
        return MockTransaction(self)

    def run_transaction(self, func: Callable[[MockTransaction], Any]) -> Any:
        """Run func with exclusive access to the store and commit its writes atomically."""
        with self._lock:
            transaction = self.transaction()
            result = func(transaction)
            self._commit(transaction._ops)
            return result

    def fail_writes_to(self, collection_id: str) -> None:
        """Make every commit touching collection_id fail (simulates a store outage)."""
        self._failing_collections.add(collection_id)

    def clear_write_failures(self) -> None:
        self._failing_collections.clear()

    # Internals

    def _snapshot(self, reference: MockDocumentReference) -> MockDocumentSnapshot:
        with self._lock:
            data = self._collections.get(reference._collection_id, {}).get(reference.id)
            return MockDocumentSnapshot(reference, data)

    def _run_query(self, query: MockQuery) -> List[MockDocumentSnapshot]:
        with self._lock:
            documents = self._collections.get(query._collection_id, {})
            rows = []
            for doc_id, data in documents.items():
                if all(_matches(_get_field(data, f), op, v) for f, op, v in query._filters):
                    rows.append((doc_id, data))

        # The cursor document is ordered with the results even if it no longer
        # matches, then everything up to and including it is dropped.
        marker = None
        if query._cursor is not None:
            marker = (query._cursor[0], query._cursor[1], True)
            rows = [row for row in rows if row[0] != marker[0]]
        rows = [(doc_id, data, False) for doc_id, data in rows]
        if marker is not None:
            rows.append(marker)

        # Document id breaks ties, as in Firestore.
        rows.sort(key=lambda row: row[0])
        for field_path, direction in reversed(query._orders):
            rows = [row for row in rows if _get_field(row[1], field_path) is not _MISSING]
            rows.sort(key=lambda row: _sort_key(_get_field(row[1], field_path)), reverse=(direction == DESCENDING))

        if marker is not None:
            position = next((i for i, row in enumerate(rows) if row[2]), None)
            rows = rows[position + 1:] if position is not None else rows
        rows = [(doc_id, data) for doc_id, data, _ in rows]

        if query._limit is not None:
            rows = rows[: query._limit]

        return [
            MockDocumentSnapshot(MockDocumentReference(self, query._collection_id, doc_id), data)
            for doc_id, data in rows
        ]

    def _commit(self, ops: List[Tuple]) -> None:
        if not ops:
            return
        with self._lock:
            touched = {ref._collection_id for _, ref, _, _ in ops}
            failing = touched & self._failing_collections
            if failing:
                raise gcp_exceptions.ServiceUnavailable(
                    f"Write to {', '.join(sorted(failing))} failed"
                )

            # Stage every write against a copy so a rejected op leaves nothing applied.
            staged = {name: dict(self._collections.get(name, {})) for name in touched}
            for op, ref, data, merge in ops:
                docs = staged[ref._collection_id]
                existing = docs.get(ref.id)
                if op == "create":
                    if existing is not None:
                        raise gcp_exceptions.AlreadyExists(f"Document already exists: {ref.path}")
                    docs[ref.id] = copy.deepcopy(data)
                elif op == "set":
                    if merge and existing is not None:
                        merged = copy.deepcopy(existing)
                        merged.update(copy.deepcopy(data))
                        docs[ref.id] = merged
                    else:
                        docs[ref.id] = copy.deepcopy(data)
                elif op == "update":
                    if existing is None:
                        raise gcp_exceptions.NotFound(f"No document to update: {ref.path}")
                    updated = copy.deepcopy(existing)
                    for field_path, value in data.items():
                        _set_field(updated, field_path, copy.deepcopy(value))
                    docs[ref.id] = updated
                elif op == "delete":
                    docs.pop(ref.id, None)

            self._collections.update(staged)

            if self._persist_path:
                self._save(self._persist_path)

            listeners = [
                (query, callback)
                for query, callback in self._listeners.values()
                if query._collection_id in touched
            ]

        for query, callback in listeners:
            self._fire(query, callback)

    def _add_listener(self, query: MockQuery, callback: Callable) -> MockWatch:
        listener_id = uuid.uuid4().hex
        with self._lock:
            self._listeners[listener_id] = (query, callback)
        self._fire(query, callback)
        return MockWatch(self, listener_id)

    def _remove_listener(self, listener_id: str) -> None:
        with self._lock:
            self._listeners.pop(listener_id, None)

    def _fire(self, query: MockQuery, callback: Callable) -> None:
        try:
            callback(self._run_query(query), [], datetime.now(timezone.utc))
        except Exception as e:
            # Listener failures never affect the write that triggered them.
            logger.warning(f"Snapshot listener raised: {e}")

    def _save(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._collections, f, default=_encode_value, indent=2)

    def _load(self, path: str) -> None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                self._collections = json.load(f, object_hook=_decode_value)
            logger.info(f"[MOCK DB] Loaded {len(self._collections)} collections from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[MOCK DB] Could not load {path}, starting empty: {e}")
            self._collections = {}


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_value(obj: Dict) -> Any:
    if set(obj.keys()) == {"__datetime__"}:
        return datetime.fromisoformat(obj["__datetime__"])
    return obj


# Global mock instance (one per persist path)
_mock_db = None


def get_mock_db(persist_path: Optional[str] = None) -> MockFirestoreClient:
    """
    Get or create the process-wide in-memory Firestore client.

    Args:
        persist_path: Optional JSON file used to persist data between runs

    Returns:
        MockFirestoreClient instance
    """
    global _mock_db
    if _mock_db is None:
        _mock_db = MockFirestoreClient(persist_path=persist_path)
    return _mock_db
