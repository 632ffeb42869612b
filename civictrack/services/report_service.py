"""
Report service - creation, lookup and listing of citizen reports.

DESIGN NOTE:
- A report always starts in `reported` with its creation audit entry
  written in the same batch
- risk_score and category come from an external scorer and are stored
  as given, except that risk_score is clamped to 0-100
- SLA information is computed at read time, never stored
- Reports are never deleted; closed reports can be archived
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ActorForbidden, InvalidInput, InvalidTransition
from civictrack.models.report import ReportCreate, ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import ActionType
from civictrack.services.activity_log import ActivityLogService
from civictrack.services.sla import SLARuleService, compute_deadline, sla_state
from civictrack.utils.firestore_helpers import ensure_utc, run_in_transaction, utcnow, where_filter
from civictrack.utils.records import REPORTS, load_report
from datetime import datetime
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


def clamp_risk_score(value: Optional[float]) -> int:
    """Clamp the scorer's output into 0-100; missing or invalid scores become 0."""
    if value is None:
        return 0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0
    if score != score:  # NaN
        return 0
    return int(round(max(0.0, min(100.0, score))))


class ReportService:
    """
    Citizen report records.
    """

    def __init__(self, db=None):
        self.db = db or get_db()
        self.activity_log = ActivityLogService(self.db)
        self.sla_rules = SLARuleService(self.db)

    def with_sla(self, report: Dict, sla_table: Optional[Dict[str, int]] = None, now: Optional[datetime] = None) -> Dict:
        """
        Attach the computed SLA block to a report dict.

        Closed reports are evaluated at their resolution time, so the state
        tells whether they were resolved inside the window.
        """
        sla_table = sla_table or self.sla_rules.get_sla_table()
        deadline = compute_deadline(report.get("priority"), report["created_at"], sla_table)
        if report.get("status") == ReportStatus.CLOSED.value and report.get("resolved_at"):
            at = ensure_utc(report["resolved_at"])
        else:
            at = now or utcnow()
        result = dict(report)
        result["sla"] = sla_state(report["created_at"], deadline, at)
        return result

    def create_report(self, report_data: ReportCreate, reporter: Actor) -> Dict:
        """
        Create a new report in `reported` status.

        Args:
            report_data: Validated report data
            reporter: Citizen (or admin filing on a citizen's behalf)

        Returns:
            The stored report with its SLA block

        Raises:
            ActorForbidden: If a worker tries to file a report
        """
        if reporter.is_worker:
            raise ActorForbidden(reporter.id, reporter.role.value, "create_report")

        now = utcnow()
        doc_ref = self.db.collection(REPORTS).document()
        report = {
            "title": report_data.title.strip(),
            "description": report_data.description.strip(),
            "category": report_data.category,
            "priority": report_data.priority.value,
            "status": ReportStatus.REPORTED.value,
            "risk_score": clamp_risk_score(report_data.risk_score),
            "created_at": now,
            "updated_at": now,
            "resolved_at": None,
            "is_escalated": False,
            "is_auto_escalated": False,
            "reporter_id": reporter.id,
            "address": report_data.address,
            "latitude": report_data.latitude,
            "longitude": report_data.longitude,
            "image_url": report_data.image_url,
            "assigned_worker": None,
            "proof_cycle": 0,
            "archived": False,
        }

        batch = self.db.batch()
        batch.create(doc_ref, report)
        self.activity_log.append(
            batch,
            doc_ref.id,
            reporter.id,
            ActionType.REPORT_CREATED,
            {"status_to": ReportStatus.REPORTED.value, "priority": report["priority"], "risk_score": report["risk_score"]},
        )
        try:
            batch.commit()
        except Exception as e:
            logger.error(f"Failed to save report to Firestore: {e}", exc_info=True)
            raise

        report["id"] = doc_ref.id
        logger.info(f"Report saved to Firestore: {doc_ref.id} ({report['priority']}, risk {report['risk_score']})")
        return self.with_sla(report, now=now)

    def get_report(self, report_id: str) -> Dict:
        """Single report with SLA block. Raises NotFound."""
        _, report = load_report(self.db, report_id)
        return self.with_sla(report)

    def list_reports(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        reporter_id: Optional[str] = None,
        assigned_worker: Optional[str] = None,
        escalated: Optional[bool] = None,
        include_archived: bool = False,
        limit: int = 100,
    ) -> List[Dict]:
        """
        Filtered report list, newest first.

        Filters are equality filters combined with AND.
        """
        query = self.db.collection(REPORTS)
        if status:
            query = where_filter(query, "status", "==", status)
        if priority:
            query = where_filter(query, "priority", "==", priority)
        if reporter_id:
            query = where_filter(query, "reporter_id", "==", reporter_id)
        if assigned_worker:
            query = where_filter(query, "assigned_worker", "==", assigned_worker)
        if escalated is not None:
            query = where_filter(query, "is_escalated", "==", escalated)

        reports = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            if data.get("archived") and not include_archived:
                continue
            reports.append(data)

        reports.sort(key=lambda r: r["created_at"], reverse=True)
        sla_table = self.sla_rules.get_sla_table()
        now = utcnow()
        return [self.with_sla(r, sla_table, now) for r in reports[:limit]]

    def get_timeline(self, report_id: str, newest_first: bool = False) -> List[Dict]:
        """Activity log of a report. Raises NotFound for unknown reports."""
        load_report(self.db, report_id)
        return self.activity_log.get_report_timeline(report_id, newest_first=newest_first)

    def archive_report(self, report_id: str, admin: Actor) -> Dict:
        """
        Hide a closed report from default listings.

        Raises:
            ActorForbidden: If the actor is not an admin
            InvalidTransition: If the report is not closed
            InvalidInput: If it is already archived
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "archive_report")

        def _run(transaction):
            report_ref, report = load_report(self.db, report_id, transaction)
            if report.get("status") != ReportStatus.CLOSED.value:
                raise InvalidTransition(report.get("status"), "archived", "Only closed reports can be archived")
            if report.get("archived"):
                raise InvalidInput(f"Report {report_id} is already archived")

            update = {"archived": True, "updated_at": utcnow()}
            transaction.update(report_ref, update)
            self.activity_log.append(transaction, report_id, admin.id, ActionType.REPORT_ARCHIVED, {})
            report.update(update)
            return report

        report = run_in_transaction(self.db, _run)
        logger.info(f"🗄️ Report {report_id} archived by {admin.id}")
        return report


# Global service instance (singleton pattern)
_report_service = None


def get_report_service() -> ReportService:
    """Get or create ReportService singleton instance."""
    global _report_service
    if _report_service is None:
        _report_service = ReportService()
    return _report_service
