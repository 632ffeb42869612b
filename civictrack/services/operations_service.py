"""
Operations Service - admin dashboard metrics over the report workflow.
"""

from civictrack.config.firebase import get_db
from civictrack.models.report import ReportStatus
from civictrack.services.assignment_manager import AssignmentManager
from civictrack.services.sla import SLARuleService, compute_deadline, is_overdue
from civictrack.utils.firestore_helpers import ensure_utc, utcnow, where_filter
from civictrack.utils.records import ESCALATIONS, REPORTS
from collections import defaultdict
from datetime import datetime
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class OperationsService:
    """Aggregates for the admin overview."""

    def __init__(self, db=None):
        self.db = db or get_db()
        self.sla_rules = SLARuleService(self.db)
        self.assignments = AssignmentManager(self.db)

    def get_summary(self, now: Optional[datetime] = None) -> Dict:
        """
        Compute the operations summary.

        - avg_resolution_hours: mean created → resolved time of closed reports
        - sla_compliance_pct: share of closed reports resolved by their deadline
        - overdue_open: open reports past their SLA deadline
        - open_escalations: unresolved escalations
        - worker_load: active assignment count per worker (advisory)

        Metrics over an empty set are None rather than 0.
        """
        now = now or utcnow()
        sla_table = self.sla_rules.get_sla_table()

        status_counts: Dict[str, int] = defaultdict(int)
        priority_counts: Dict[str, int] = defaultdict(int)
        resolution_hours = []
        resolved_in_time = 0
        overdue_open = 0
        total = 0

        for doc in self.db.collection(REPORTS).stream():
            report = doc.to_dict()
            total += 1
            status = report.get("status", ReportStatus.REPORTED.value)
            status_counts[status] += 1
            priority_counts[report.get("priority", "Medium")] += 1

            deadline = compute_deadline(report.get("priority"), report["created_at"], sla_table)
            if status == ReportStatus.CLOSED.value:
                resolved_at = report.get("resolved_at")
                if not resolved_at:
                    continue
                resolved_at = ensure_utc(resolved_at)
                hours = (resolved_at - ensure_utc(report["created_at"])).total_seconds() / 3600
                resolution_hours.append(hours)
                if not is_overdue(deadline, resolved_at):
                    resolved_in_time += 1
            elif is_overdue(deadline, now):
                overdue_open += 1

        open_escalations = len(list(where_filter(self.db.collection(ESCALATIONS), "resolved", "==", False).stream()))

        closed_count = len(resolution_hours)
        summary = {
            "total_reports": total,
            "by_status": dict(status_counts),
            "by_priority": dict(priority_counts),
            "avg_resolution_hours": round(sum(resolution_hours) / closed_count, 2) if closed_count else None,
            "sla_compliance_pct": round(resolved_in_time / closed_count * 100, 1) if closed_count else None,
            "overdue_open": overdue_open,
            "open_escalations": open_escalations,
            "worker_load": self.assignments.get_worker_workloads(),
            "generated_at": now,
        }
        logger.debug(f"Operations summary computed over {total} reports")
        return summary


# Global service instance (singleton pattern)
_operations_service = None


def get_operations_service() -> OperationsService:
    """Get or create OperationsService singleton instance."""
    global _operations_service
    if _operations_service is None:
        _operations_service = OperationsService()
    return _operations_service
