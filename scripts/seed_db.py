"""
Seed script for the CivicTrack mock DB or Firestore.

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to configured DB: python scripts/seed_db.py --apply
  - Use a custom seed file: python scripts/seed_db.py --file my_seed.json --apply
  - Force mock DB even if FIREBASE configured: python scripts/seed_db.py --apply --force-mock

Behavior:
  - Seeds the worker roster and the per-priority SLA rules.
  - Without --file, uses the built-in demo roster and the configured default
    SLA hours.
  - A seed file has the shape {"workers": {id: {...}}, "sla_rules": {priority: {...}}}.
  - Gets the DB via `civictrack.config.firebase.get_db()`, which returns the
    mock DB or real Firestore depending on settings.

NOTE: When applying to real Firestore, ensure `FIREBASE_CREDENTIALS_PATH` and
`USE_MOCK_DB=false` are set in `.env`.
"""

import argparse
import json
import os
from typing import Any, Dict

from civictrack.config.firebase import get_db
from civictrack.core.settings import settings
from civictrack.services.sla import default_sla_table
from civictrack.utils.firestore_helpers import utcnow

DEMO_WORKERS = {
    "worker-roads-1": {"full_name": "Ravi Kulkarni", "department": "Roads"},
    "worker-roads-2": {"full_name": "Meera Joshi", "department": "Roads"},
    "worker-lighting-1": {"full_name": "Arjun Patil", "department": "Street Lighting"},
    "worker-sanitation-1": {"full_name": "Sana Shaikh", "department": "Sanitation"},
}


def build_default_seed() -> Dict[str, Dict[str, Dict]]:
    now = utcnow()
    workers = {
        worker_id: {
            "full_name": info["full_name"],
            "department": info["department"],
            "phone": None,
            "status": "available",
            "is_active": True,
            "joined_at": now,
            "last_assigned_at": None,
        }
        for worker_id, info in DEMO_WORKERS.items()
    }
    sla_rules = {
        priority: {"priority": priority, "max_hours": hours, "updated_at": now, "updated_by": "seed"}
        for priority, hours in default_sla_table().items()
    }
    return {"workers": workers, "sla_rules": sla_rules}


def load_seed(path: str) -> Dict[str, Dict[str, Dict]]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_to_db(db: Any, seed: dict, apply: bool = False) -> int:
    written = 0
    for collection, docs in seed.items():
        for doc_id, data in docs.items():
            print(f"Preparing: {collection}/{doc_id}")
            if not apply:
                continue
            try:
                db.collection(collection).document(doc_id).set(data, merge=True)
                written += 1
                print(f"Wrote: {collection}/{doc_id}")
            except Exception as e:
                print(f"Failed to write {collection}/{doc_id}: {e}")
    return written


def main():
    parser = argparse.ArgumentParser(description="Seed workers and SLA rules")
    parser.add_argument("--apply", action="store_true", help="Write seed to the DB instead of dry-run")
    parser.add_argument("--file", help="JSON seed file (defaults to the built-in demo seed)")
    parser.add_argument("--force-mock", action="store_true", help="Force use of mock DB even if FIREBASE configured")
    args = parser.parse_args()

    if args.file:
        if not os.path.exists(args.file):
            print(f"Seed file not found: {args.file}")
            return
        seed = load_seed(args.file)
    else:
        seed = build_default_seed()

    if args.force_mock:
        print("Forcing mock DB usage for this run.")
        settings.USE_MOCK_DB = True

    db = get_db()
    written = write_to_db(db, seed, apply=args.apply)

    if args.apply:
        print(f"Seeding completed ({written} documents).")
    else:
        print("Dry run complete. Re-run with --apply to write to DB.")


if __name__ == "__main__":
    main()
