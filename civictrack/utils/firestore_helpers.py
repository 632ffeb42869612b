"""
Firestore query and transaction helpers shared by every service.

NOTE: For firebase_admin SDK, we use positional arguments for where() which
still work. The deprecation warning is just a warning - the functionality is
still supported, and the in-memory client accepts the same call shape.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from firebase_admin import firestore

from civictrack.config.mock_firestore import MockFirestoreClient


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Usage:
        query = where_filter(collection, "report_id", "==", report_id)
        query = where_filter(query, "is_active", "==", True)
    """
    return query.where(field_path, op_string, value)


def run_in_transaction(db, func: Callable[[Any], Any]) -> Any:
    """
    Run func(transaction) as one atomic unit.

    With real Firestore this is an optimistic transaction: func may be retried
    when a document it read changed concurrently, so it must do all reads
    before its first write and must not have side effects outside the
    transaction. The in-memory client serializes transactions instead.

    Returns:
        Whatever func returns from its successful attempt
    """
    if isinstance(db, MockFirestoreClient):
        return db.run_transaction(func)

    transaction = db.transaction()

    @firestore.transactional
    def _run(txn):
        return func(txn)

    return _run(transaction)


def utcnow() -> datetime:
    """Timezone-aware current UTC time; every stored timestamp uses this."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Any) -> Optional[datetime]:
    """Normalize stored timestamps (aware datetimes, naive datetimes, ISO strings) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def snapshot_to_dict(doc) -> Optional[Dict]:
    """Document snapshot → dict with its id, or None when the document does not exist."""
    if not doc.exists:
        return None
    data = doc.to_dict()
    data["id"] = doc.id
    return data
