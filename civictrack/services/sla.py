"""
SLA deadline calculator and SLA rule store.

The calculator functions are pure: (priority, created_at, table) in,
deadline / remaining time / SLA state out. The rule store keeps the
per-priority table in the sla_rules collection, falling back to the
configured defaults for priorities no admin has edited.

Editing a rule changes deadlines computed from then on. Closed reports are
never re-evaluated, so an edit cannot reopen or re-escalate resolved work.
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ActorForbidden, InvalidInput
from civictrack.core.settings import settings
from civictrack.models.report import ReportPriority
from civictrack.models.user import Actor
from civictrack.services.activity_log import ActivityLogService
from civictrack.utils.firestore_helpers import ensure_utc, utcnow
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

SLA_RULES_COLLECTION = "sla_rules"

STATE_ON_TRACK = "on_track"
STATE_AT_RISK = "at_risk"
STATE_BREACHED = "breached"


def default_sla_table() -> Dict[str, int]:
    """Configured default SLA hours keyed by priority value."""
    return {
        ReportPriority.LOW.value: settings.SLA_HOURS_LOW,
        ReportPriority.MEDIUM.value: settings.SLA_HOURS_MEDIUM,
        ReportPriority.HIGH.value: settings.SLA_HOURS_HIGH,
        ReportPriority.URGENT.value: settings.SLA_HOURS_URGENT,
    }


def sla_hours(priority: str, table: Optional[Dict[str, int]] = None) -> int:
    """
    SLA window for a priority.

    Unknown priorities use the Medium window.
    """
    table = table or default_sla_table()
    if isinstance(priority, ReportPriority):
        priority = priority.value
    if priority in table:
        return table[priority]
    return table.get(ReportPriority.MEDIUM.value, settings.SLA_HOURS_MEDIUM)


def compute_deadline(priority: str, created_at: datetime, table: Optional[Dict[str, int]] = None) -> datetime:
    return ensure_utc(created_at) + timedelta(hours=sla_hours(priority, table))


def time_remaining(deadline: datetime, now: Optional[datetime] = None) -> timedelta:
    """Signed time left until deadline; negative once overdue."""
    now = ensure_utc(now) if now else utcnow()
    return ensure_utc(deadline) - now


def is_overdue(deadline: datetime, now: Optional[datetime] = None) -> bool:
    """Strictly past the deadline (a report exactly at its deadline is not overdue)."""
    return time_remaining(deadline, now) < timedelta(0)


def sla_state(
    created_at: datetime,
    deadline: datetime,
    now: Optional[datetime] = None,
    at_risk_ratio: Optional[float] = None,
) -> Dict:
    """
    Describe where a report sits inside its SLA window.

    Args:
        created_at: Report creation time
        deadline: SLA deadline
        now: Evaluation time (defaults to current UTC time)
        at_risk_ratio: Elapsed fraction after which the report is "at risk"

    Returns:
        Dict with deadline, remaining_hours, elapsed_pct and state
        (on_track, at_risk or breached)
    """
    now = ensure_utc(now) if now else utcnow()
    created_at = ensure_utc(created_at)
    deadline = ensure_utc(deadline)
    ratio = settings.SLA_AT_RISK_RATIO if at_risk_ratio is None else at_risk_ratio

    remaining = time_remaining(deadline, now)
    window = (deadline - created_at).total_seconds()
    elapsed = (now - created_at).total_seconds()
    elapsed_pct = 100.0 if window <= 0 else max(0.0, min(100.0, elapsed / window * 100))

    if is_overdue(deadline, now):
        state = STATE_BREACHED
    elif elapsed_pct > ratio * 100:
        state = STATE_AT_RISK
    else:
        state = STATE_ON_TRACK

    return {
        "deadline": deadline,
        "remaining_hours": round(remaining.total_seconds() / 3600, 2),
        "elapsed_pct": round(elapsed_pct, 1),
        "state": state,
    }


class SLARuleService:
    """
    Persistent per-priority SLA table.
    """

    def __init__(self, db=None):
        self.db = db or get_db()
        self.activity_log = ActivityLogService(self.db)

    def get_sla_table(self, transaction=None) -> Dict[str, int]:
        """Defaults overlaid with stored admin edits."""
        table = default_sla_table()
        for doc in self.db.collection(SLA_RULES_COLLECTION).stream(transaction=transaction):
            data = doc.to_dict()
            priority = data.get("priority") or doc.id
            max_hours = data.get("max_hours")
            if isinstance(max_hours, (int, float)) and max_hours > 0:
                table[priority] = int(max_hours)
        return table

    def list_rules(self) -> List[Dict]:
        stored = {}
        for doc in self.db.collection(SLA_RULES_COLLECTION).stream():
            stored[doc.id] = doc.to_dict()

        rules = []
        for priority, max_hours in self.get_sla_table().items():
            record = stored.get(priority, {})
            rules.append({
                "priority": priority,
                "max_hours": max_hours,
                "updated_at": record.get("updated_at"),
                "updated_by": record.get("updated_by"),
            })
        return rules

    def update_rule(self, priority: str, max_hours: int, admin: Actor) -> Dict:
        """
        Change the SLA window for one priority.

        Args:
            priority: Priority value (Low/Medium/High/Urgent)
            max_hours: New window in hours, must be positive
            admin: Acting admin

        Returns:
            The stored rule

        Raises:
            ActorForbidden: If the actor is not an admin
            InvalidInput: If priority is unknown or hours are not positive
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "update_sla_rule")
        try:
            priority = ReportPriority(priority).value
        except ValueError:
            raise InvalidInput(f"Unknown priority: {priority}", field="priority")
        if not isinstance(max_hours, int) or max_hours <= 0:
            raise InvalidInput("max_hours must be a positive integer", field="max_hours")

        rule = {
            "priority": priority,
            "max_hours": max_hours,
            "updated_at": utcnow(),
            "updated_by": admin.id,
        }

        batch = self.db.batch()
        batch.set(self.db.collection(SLA_RULES_COLLECTION).document(priority), rule)
        self.activity_log.append_admin(
            batch,
            admin_id=admin.id,
            action=f"Updated SLA for {priority} to {max_hours}h",
            target_type="SLA",
            target_id=priority,
        )
        batch.commit()

        logger.info(f"Admin {admin.id} set SLA for {priority} to {max_hours}h")
        return rule


# Global service instance (singleton pattern)
_sla_rule_service = None


def get_sla_rule_service() -> SLARuleService:
    """Get or create SLARuleService singleton instance."""
    global _sla_rule_service
    if _sla_rule_service is None:
        _sla_rule_service = SLARuleService()
    return _sla_rule_service
