"""
Activity Log - append-only audit trail of every state-changing action.

DESIGN PRINCIPLES:
- Entries are only ever created, never updated or deleted
- Writers pass the transaction (or batch) of the operation being audited,
  so the entry commits atomically with the change it records
- A failed log write therefore fails the operation itself
"""

from civictrack.config.firebase import get_db
from civictrack.models.workflow import ActionType
from civictrack.utils.firestore_helpers import where_filter, utcnow
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

ACTIVITY_LOG_COLLECTION = "report_activity_logs"
ADMIN_ACTIVITY_LOG_COLLECTION = "admin_activity_logs"


class ActivityLogService:
    """
    Writes and reads report activity entries.
    """

    def __init__(self, db=None):
        self.db = db or get_db()

    def build_entry(
        self,
        report_id: str,
        actor_id: Optional[str],
        action_type: ActionType,
        details: Optional[Dict] = None,
    ) -> Dict:
        """
        Create an activity log entry.

        Args:
            report_id: Report the action applies to
            actor_id: Acting identity, None for system-generated entries
            action_type: What happened
            details: Structured details (status_from/status_to, comment, ...)

        Returns:
            Entry dict ready to be written
        """
        return {
            "report_id": report_id,
            "actor_id": actor_id,
            "action_type": ActionType(action_type).value,
            "details": details or {},
            "created_at": utcnow(),
        }

    def append(
        self,
        writer,
        report_id: str,
        actor_id: Optional[str],
        action_type: ActionType,
        details: Optional[Dict] = None,
    ) -> Dict:
        """
        Stage an entry on a transaction or write batch.

        The entry is written only when the writer commits.
        """
        entry = self.build_entry(report_id, actor_id, action_type, details)
        doc_ref = self.db.collection(ACTIVITY_LOG_COLLECTION).document()
        writer.create(doc_ref, entry)
        entry["id"] = doc_ref.id
        return entry

    def append_admin(self, writer, admin_id: str, action: str, target_type: str, target_id: Optional[str] = None) -> Dict:
        """Stage an admin-level audit fact that is not tied to a single report."""
        entry = {
            "admin_id": admin_id,
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "created_at": utcnow(),
        }
        doc_ref = self.db.collection(ADMIN_ACTIVITY_LOG_COLLECTION).document()
        writer.create(doc_ref, entry)
        entry["id"] = doc_ref.id
        return entry

    def get_report_timeline(self, report_id: str, newest_first: bool = False) -> List[Dict]:
        """All entries for a report, ordered by time."""
        query = where_filter(self.db.collection(ACTIVITY_LOG_COLLECTION), "report_id", "==", report_id)

        entries = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            entries.append(data)

        # Sorted in Python to avoid a composite index on (report_id, created_at)
        entries.sort(key=lambda e: e["created_at"], reverse=newest_first)
        return entries

    def get_admin_activity(self, limit: int = 50) -> List[Dict]:
        entries = []
        for doc in self.db.collection(ADMIN_ACTIVITY_LOG_COLLECTION).stream():
            data = doc.to_dict()
            data["id"] = doc.id
            entries.append(data)
        entries.sort(key=lambda e: e["created_at"], reverse=True)
        return entries[:limit]


# Global service instance (singleton pattern)
_activity_log_service = None


def get_activity_log_service() -> ActivityLogService:
    """Get or create ActivityLogService singleton instance."""
    global _activity_log_service
    if _activity_log_service is None:
        _activity_log_service = ActivityLogService()
    return _activity_log_service
