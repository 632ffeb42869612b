"""
Shared fixtures: an in-memory Firestore per test, actors of every role,
the engine services wired to that store, and a FastAPI test client.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from civictrack.config.mock_firestore import MockFirestoreClient
from civictrack.models.report import ReportCreate, ReportPriority, ReportStatus
from civictrack.models.user import Actor, Role, WorkerCreate
from civictrack.services.activity_log import ActivityLogService
from civictrack.services.assignment_manager import AssignmentManager
from civictrack.services.channel_router import ChannelRouter
from civictrack.services.escalation_engine import EscalationEngine
from civictrack.services.notification_service import NotificationService
from civictrack.services.operations_service import OperationsService
from civictrack.services.proof_verifier import ProofVerifier
from civictrack.services.report_service import ReportService
from civictrack.services.sla import SLARuleService
from civictrack.services.status_workflow import StatusWorkflowEngine
from civictrack.services.worker_service import WorkerService

WORKER_IDS = ("worker-1", "worker-2", "worker-3")


@pytest.fixture()
def db():
    return MockFirestoreClient()


# ── Actors ──────────────────────────────────────────────────────────────

@pytest.fixture()
def admin():
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture()
def citizen():
    return Actor(id="citizen-1", role=Role.CITIZEN)


@pytest.fixture()
def other_citizen():
    return Actor(id="citizen-2", role=Role.CITIZEN)


@pytest.fixture()
def worker():
    return Actor(id="worker-1", role=Role.WORKER)


@pytest.fixture()
def worker2():
    return Actor(id="worker-2", role=Role.WORKER)


# ── Services ────────────────────────────────────────────────────────────

@pytest.fixture()
def services(db):
    notifier = NotificationService(db)
    return SimpleNamespace(
        db=db,
        notifier=notifier,
        reports=ReportService(db),
        workers=WorkerService(db),
        workflow=StatusWorkflowEngine(db),
        assignments=AssignmentManager(db, notifier),
        escalations=EscalationEngine(db, notifier),
        proofs=ProofVerifier(db, notifier),
        channels=ChannelRouter(db),
        sla_rules=SLARuleService(db),
        activity=ActivityLogService(db),
        operations=OperationsService(db),
    )


@pytest.fixture()
def registered_workers(services, admin):
    for worker_id in WORKER_IDS:
        services.workers.register_worker(
            WorkerCreate(worker_id=worker_id, full_name=f"Field Worker {worker_id[-1]}", department="Roads"),
            admin,
        )
    return list(WORKER_IDS)


@pytest.fixture()
def make_report(services, citizen):
    def _make(priority=ReportPriority.MEDIUM, reporter=None, risk_score=55, title="Pothole near bus stop"):
        data = ReportCreate(
            title=title,
            description="Deep pothole in the left lane next to the bus stop.",
            category="pothole",
            priority=priority,
            risk_score=risk_score,
            address="MG Road, Sector 12",
        )
        return services.reports.create_report(data, reporter or citizen)
    return _make


@pytest.fixture()
def assigned_report(services, make_report, registered_workers, admin):
    report = make_report()
    services.assignments.assign(report["id"], "worker-1", admin)
    return report["id"]


@pytest.fixture()
def in_progress_report(services, assigned_report, worker):
    services.workflow.transition(assigned_report, ReportStatus.IN_PROGRESS.value, worker)
    return assigned_report


@pytest.fixture()
def awaiting_report(services, in_progress_report, worker):
    """Report in awaiting_verification; returns (report_id, proof_id)."""
    result = services.proofs.submit_proof(in_progress_report, worker, ["https://storage.example.com/fix-1.jpg"])
    return in_progress_report, result["proof"]["id"]


# ── Helpers ─────────────────────────────────────────────────────────────

def dump(db):
    """Every document of every collection, for before/after comparisons."""
    return {
        collection.id: {doc.id: doc.to_dict() for doc in collection.stream()}
        for collection in db.collections()
    }


def get_doc(db, collection, doc_id):
    return db.collection(collection).document(doc_id).get().to_dict()


def timeline(db, report_id):
    return ActivityLogService(db).get_report_timeline(report_id)


def backdate_report(db, report_id, hours):
    created_at = datetime.now(timezone.utc) - timedelta(hours=hours)
    db.collection("reports").document(report_id).update({"created_at": created_at})
    return created_at


def active_assignments(db, report_id):
    query = db.collection("report_assignments").where("report_id", "==", report_id).where("is_active", "==", True)
    return [doc.to_dict() for doc in query.stream()]


def headers(actor):
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role.value}


# ── API ─────────────────────────────────────────────────────────────────

SINGLETONS = [
    ("civictrack.services.activity_log", "_activity_log_service"),
    ("civictrack.services.assignment_manager", "_assignment_manager"),
    ("civictrack.services.channel_router", "_channel_router"),
    ("civictrack.services.escalation_engine", "_escalation_engine"),
    ("civictrack.services.notification_service", "_notification_service"),
    ("civictrack.services.operations_service", "_operations_service"),
    ("civictrack.services.proof_verifier", "_proof_verifier"),
    ("civictrack.services.report_service", "_report_service"),
    ("civictrack.services.sla", "_sla_rule_service"),
    ("civictrack.services.status_workflow", "_status_workflow"),
    ("civictrack.services.worker_service", "_worker_service"),
]


@pytest.fixture()
def client(db, monkeypatch):
    """TestClient whose services all use this test's in-memory store."""
    import importlib

    from civictrack.config import firebase
    from civictrack.main import app

    monkeypatch.setattr(firebase, "db", db)
    for module_name, attr in SINGLETONS:
        monkeypatch.setattr(importlib.import_module(module_name), attr, None)

    return TestClient(app)
