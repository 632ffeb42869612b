"""
Worker Service - field worker roster in Firestore.
"""

from google.api_core import exceptions as gcp_exceptions

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ActorForbidden, InvalidInput
from civictrack.models.user import Actor, WorkerCreate, WorkerStatus
from civictrack.services.activity_log import ActivityLogService
from civictrack.services.assignment_manager import AssignmentManager
from civictrack.utils.firestore_helpers import run_in_transaction, utcnow
from civictrack.utils.records import REPORTS, WORKERS, load_worker, load_worker_active_assignments
from typing import Dict, List
import logging

logger = logging.getLogger(__name__)


class WorkerService:
    """
    Service for worker management.
    """

    def __init__(self, db=None):
        self.db = db or get_db()
        self.activity_log = ActivityLogService(self.db)
        self.assignments = AssignmentManager(self.db)

    def register_worker(self, worker_data: WorkerCreate, admin: Actor) -> Dict:
        """
        Onboard a field worker.

        The worker document id is the worker's actor identity, so the same id
        is used in assignments and in the X-Actor-Id header.

        Raises:
            ActorForbidden: If the actor is not an admin
            InvalidInput: If the worker is already registered
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "register_worker")

        worker = {
            "full_name": worker_data.full_name.strip(),
            "department": worker_data.department,
            "phone": worker_data.phone,
            "status": WorkerStatus.AVAILABLE.value,
            "is_active": True,
            "joined_at": utcnow(),
            "last_assigned_at": None,
        }

        batch = self.db.batch()
        batch.create(self.db.collection(WORKERS).document(worker_data.worker_id), worker)
        self.activity_log.append_admin(
            batch,
            admin_id=admin.id,
            action=f"Registered worker {worker['full_name']}",
            target_type="Worker",
            target_id=worker_data.worker_id,
        )
        try:
            batch.commit()
        except gcp_exceptions.AlreadyExists:
            raise InvalidInput(f"Worker {worker_data.worker_id} is already registered", field="worker_id")

        worker["id"] = worker_data.worker_id
        worker["active_assignments"] = 0
        logger.info(f"👷 Worker registered: {worker_data.worker_id} by {admin.id}")
        return worker

    def get_worker(self, worker_id: str) -> Dict:
        _, worker = load_worker(self.db, worker_id)
        worker["active_assignments"] = len(load_worker_active_assignments(self.db, worker_id))
        return worker

    def list_workers(self, include_inactive: bool = False) -> List[Dict]:
        """Roster with the advisory active-assignment count of each worker."""
        loads = {w["worker_id"]: w["active_assignments"] for w in self.assignments.get_worker_workloads()}

        workers = []
        for doc in self.db.collection(WORKERS).stream():
            data = doc.to_dict()
            if not include_inactive and data.get("is_active") is False:
                continue
            data["id"] = doc.id
            data["active_assignments"] = loads.get(doc.id, 0)
            workers.append(data)
        workers.sort(key=lambda w: w.get("full_name") or w["id"])
        return workers

    def set_status(self, worker_id: str, status: WorkerStatus, actor: Actor) -> Dict:
        """
        Change a worker's availability.

        Admins may change anyone; a worker may change only their own status.

        Raises:
            ActorForbidden, NotFound, InvalidInput
        """
        if not actor.is_admin and not (actor.is_worker and actor.id == worker_id):
            raise ActorForbidden(actor.id, actor.role.value, "set_worker_status")
        try:
            status = WorkerStatus(status)
        except ValueError:
            raise InvalidInput(f"Unknown worker status: {status}", field="status")

        worker_ref, worker = load_worker(self.db, worker_id)

        batch = self.db.batch()
        batch.update(worker_ref, {"status": status.value})
        if actor.is_admin:
            self.activity_log.append_admin(
                batch,
                admin_id=actor.id,
                action=f"Set worker status to {status.value}",
                target_type="Worker",
                target_id=worker_id,
            )
        batch.commit()

        worker["status"] = status.value
        logger.info(f"Worker {worker_id} status → {status.value} (by {actor.id})")
        return worker

    def set_active(self, worker_id: str, is_active: bool, admin: Actor) -> Dict:
        """
        Deactivate or reactivate a worker.

        A deactivated worker stays on record (assignment history keeps
        pointing at it) but is hidden from the default roster and cannot be
        given new work. A worker holding active assignments must have them
        reassigned before deactivation.

        Raises:
            ActorForbidden: If the actor is not an admin
            NotFound: If the worker does not exist
            InvalidInput: If the worker still has active assignments
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "set_worker_active")

        def _run(transaction):
            worker_ref, worker = load_worker(self.db, worker_id, transaction)
            active = load_worker_active_assignments(self.db, worker_id, transaction)
            if not is_active and active:
                raise InvalidInput(
                    f"Worker {worker_id} still has {len(active)} active assignment(s); reassign them first",
                    field="is_active",
                )

            transaction.update(worker_ref, {"is_active": is_active})
            self.activity_log.append_admin(
                transaction,
                admin_id=admin.id,
                action="Reactivated worker" if is_active else "Deactivated worker",
                target_type="Worker",
                target_id=worker_id,
            )
            worker["is_active"] = is_active
            worker["active_assignments"] = len(active)
            return worker

        worker = run_in_transaction(self.db, _run)
        logger.info(f"Worker {worker_id} {'reactivated' if is_active else 'deactivated'} by {admin.id}")
        return worker

    def get_my_assignments(self, worker: Actor) -> List[Dict]:
        """Active assignments of a worker, each with a summary of its report."""
        if not worker.is_worker:
            raise ActorForbidden(worker.id, worker.role.value, "list_worker_assignments")

        items = []
        for _, assignment in load_worker_active_assignments(self.db, worker.id):
            report_doc = self.db.collection(REPORTS).document(assignment["report_id"]).get()
            report = report_doc.to_dict() if report_doc.exists else {}
            assignment["report"] = {
                "id": assignment["report_id"],
                "title": report.get("title"),
                "status": report.get("status"),
                "priority": report.get("priority"),
                "address": report.get("address"),
            }
            items.append(assignment)
        items.sort(key=lambda a: a["created_at"], reverse=True)
        return items


# Global service instance (singleton pattern)
_worker_service = None


def get_worker_service() -> WorkerService:
    """Get or create WorkerService singleton instance."""
    global _worker_service
    if _worker_service is None:
        _worker_service = WorkerService()
    return _worker_service
