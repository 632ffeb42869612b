"""
In-memory Firestore client tests: the behaviour the services rely on.
"""

import pytest
from google.api_core import exceptions as gcp_exceptions

from civictrack.config.mock_firestore import DESCENDING, MockFirestoreClient
from civictrack.utils.firestore_helpers import run_in_transaction, where_filter


@pytest.fixture()
def store():
    db = MockFirestoreClient()
    for doc_id, priority, score in [("a", "High", 70), ("b", "Low", 10), ("c", "High", 90)]:
        db.collection("reports").document(doc_id).set({"priority": priority, "risk_score": score})
    return db


class TestQueries:
    def test_where_and_order(self, store):
        query = where_filter(store.collection("reports"), "priority", "==", "High")
        docs = query.order_by("risk_score", direction=DESCENDING).stream()
        assert [d.id for d in docs] == ["c", "a"]

    def test_in_operator_and_limit(self, store):
        query = where_filter(store.collection("reports"), "priority", "in", ["High", "Low"])
        assert len(query.limit(2).get()) == 2

    def test_start_after_pages_in_order(self, store):
        query = store.collection("reports").order_by("risk_score").limit(2)
        first = query.get()
        second = query.start_after(first[-1]).get()
        assert [d.id for d in first] == ["b", "a"]
        assert [d.id for d in second] == ["c"]

    def test_start_after_document_that_left_the_result(self, store):
        query = where_filter(store.collection("reports"), "priority", "==", "High").order_by("risk_score")
        cursor = query.limit(1).get()[0]
        store.collection("reports").document("a").update({"priority": "Low"})
        assert [d.id for d in query.start_after(cursor).get()] == ["c"]

    def test_reads_are_copies(self, store):
        data = store.collection("reports").document("a").get().to_dict()
        data["priority"] = "Urgent"
        assert store.collection("reports").document("a").get().to_dict()["priority"] == "High"


class TestWrites:
    def test_create_existing_fails(self, store):
        with pytest.raises(gcp_exceptions.AlreadyExists):
            store.collection("reports").document("a").create({"priority": "Low"})

    def test_update_missing_fails(self, store):
        with pytest.raises(gcp_exceptions.NotFound):
            store.collection("reports").document("zzz").update({"priority": "Low"})

    def test_batch_is_all_or_nothing(self, store):
        batch = store.batch()
        batch.update(store.collection("reports").document("b"), {"priority": "Urgent"})
        batch.create(store.collection("reports").document("a"), {"priority": "Low"})
        with pytest.raises(gcp_exceptions.AlreadyExists):
            batch.commit()
        assert store.collection("reports").document("b").get().to_dict()["priority"] == "Low"

    def test_transaction_discarded_on_error(self, store):
        def _run(transaction):
            transaction.update(store.collection("reports").document("a"), {"risk_score": 0})
            raise ValueError("abort")

        with pytest.raises(ValueError):
            run_in_transaction(store, _run)
        assert store.collection("reports").document("a").get().to_dict()["risk_score"] == 70

    def test_write_failure_injection(self, store):
        store.fail_writes_to("logs")
        batch = store.batch()
        batch.update(store.collection("reports").document("a"), {"risk_score": 1})
        batch.set(store.collection("logs").document(), {"msg": "x"})
        with pytest.raises(gcp_exceptions.ServiceUnavailable):
            batch.commit()
        assert store.collection("reports").document("a").get().to_dict()["risk_score"] == 70


class TestListeners:
    def test_on_snapshot(self, store):
        seen = []
        query = where_filter(store.collection("reports"), "priority", "==", "Low")
        watch = query.on_snapshot(lambda docs, changes, read_time: seen.append(sorted(d.id for d in docs)))

        store.collection("reports").document("d").set({"priority": "Low", "risk_score": 5})
        watch.unsubscribe()
        store.collection("reports").document("e").set({"priority": "Low", "risk_score": 5})

        assert seen == [["b"], ["b", "d"]]

    def test_failing_listener_does_not_break_writes(self, store):
        def _boom(docs, changes, read_time):
            raise RuntimeError("listener bug")

        store.collection("reports").on_snapshot(_boom)
        store.collection("reports").document("f").set({"priority": "Low"})
        assert store.collection("reports").document("f").get().exists
