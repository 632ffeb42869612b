"""
Collection names and transactional loaders for workflow records.

Every loader accepts an optional transaction so the services can do all of
their reads inside the same transaction that later writes. Missing records
raise NotFound.
"""

from civictrack.core.exceptions import NotFound
from civictrack.utils.firestore_helpers import where_filter
from typing import Dict, List, Optional, Tuple

REPORTS = "reports"
ASSIGNMENTS = "report_assignments"
ESCALATIONS = "escalations"
PROOFS = "resolution_proofs"
MESSAGES = "report_messages"
WORKERS = "workers"
NOTIFICATIONS = "notifications"
WORKER_RATINGS = "worker_ratings"


def _load(db, collection: str, label: str, doc_id: str, transaction=None) -> Tuple[object, Dict]:
    if not doc_id:
        raise NotFound(label, doc_id)
    doc_ref = db.collection(collection).document(doc_id)
    doc = doc_ref.get(transaction=transaction)
    if not doc.exists:
        raise NotFound(label, doc_id)
    data = doc.to_dict()
    data["id"] = doc.id
    return doc_ref, data


def load_report(db, report_id: str, transaction=None) -> Tuple[object, Dict]:
    return _load(db, REPORTS, "Report", report_id, transaction)


def load_worker(db, worker_id: str, transaction=None) -> Tuple[object, Dict]:
    return _load(db, WORKERS, "Worker", worker_id, transaction)


def load_proof(db, proof_id: str, transaction=None) -> Tuple[object, Dict]:
    return _load(db, PROOFS, "Resolution proof", proof_id, transaction)


def load_escalation(db, escalation_id: str, transaction=None) -> Tuple[object, Dict]:
    return _load(db, ESCALATIONS, "Escalation", escalation_id, transaction)


def _query(db, collection: str, filters: List[Tuple], transaction=None) -> List[Tuple[object, Dict]]:
    query = db.collection(collection)
    for field_path, op_string, value in filters:
        query = where_filter(query, field_path, op_string, value)
    rows = []
    for doc in query.stream(transaction=transaction):
        data = doc.to_dict()
        data["id"] = doc.id
        rows.append((doc.reference, data))
    return rows


def load_active_assignments(db, report_id: str, transaction=None) -> List[Tuple[object, Dict]]:
    """Active assignments of a report (zero or one under the engine's invariant)."""
    return _query(db, ASSIGNMENTS, [("report_id", "==", report_id), ("is_active", "==", True)], transaction)


def load_assignments(db, report_id: str, transaction=None) -> List[Tuple[object, Dict]]:
    rows = _query(db, ASSIGNMENTS, [("report_id", "==", report_id)], transaction)
    rows.sort(key=lambda row: row[1]["created_at"])
    return rows


def load_worker_active_assignments(db, worker_id: str, transaction=None) -> List[Tuple[object, Dict]]:
    return _query(db, ASSIGNMENTS, [("worker_id", "==", worker_id), ("is_active", "==", True)], transaction)


def load_open_escalations(db, report_id: str, transaction=None) -> List[Tuple[object, Dict]]:
    return _query(db, ESCALATIONS, [("report_id", "==", report_id), ("resolved", "==", False)], transaction)


def load_proofs(db, report_id: str, transaction=None) -> List[Tuple[object, Dict]]:
    rows = _query(db, PROOFS, [("report_id", "==", report_id)], transaction)
    rows.sort(key=lambda row: row[1]["created_at"])
    return rows


def active_worker_id(active_assignments: List[Tuple[object, Dict]]) -> Optional[str]:
    if not active_assignments:
        return None
    return active_assignments[0][1]["worker_id"]
