"""
Services layer - the report lifecycle engine lives here.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Every workflow rule is enforced inside a service, never at the call site
- Actor role checks happen in the engine, so no entry point can bypass them
- Each state-changing operation commits its audit entry in the same
  transaction as the change

Engine components:
- status_workflow.py: status state machine
- assignment_manager.py: report ↔ worker binding
- escalation_engine.py: SLA breaches and manual escalations
- proof_verifier.py: resolution proof submission and verification
- channel_router.py: per-report message channels
- activity_log.py: append-only audit trail
"""
