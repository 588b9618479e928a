"""Tests for queue snapshots (export/import and file save/load)."""

import json
import os

import pytest

from routeq import Priority, Status, ValidationError, WorkQueue

COMPLEX_PROMPT = (
    "Firstly design the database architecture, then optimize the API "
    "cache performance for parallel stream processing"
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def busy_queue(clock):
    """A queue with pending, in-flight, completed, failed, and batched records."""
    queue = WorkQueue(clock=clock)
    done = queue.enqueue(COMPLEX_PROMPT, record_id="done").id
    broken = queue.enqueue("explain recursion", record_id="broken").id
    queue.enqueue("explain iteration", record_id="running")
    queue.enqueue("list all files in the repository", priority=Priority.LOW, record_id="low-1")
    queue.enqueue("please list all files in the repository", priority=Priority.LOW, record_id="low-2")
    queue.enqueue("explain closures", priority=Priority.URGENT, record_id="urgent")

    queue.dequeue(record_id=done)
    clock.advance(2)
    queue.complete(done, {"text": "answer", "tokens_used": 12})
    queue.dequeue(record_id=broken)
    queue.fail(broken, RuntimeError("boom"))
    queue.dequeue(record_id="running")
    return queue


class TestExportImport:

    def test_snapshot_is_json_serializable(self, busy_queue):
        state = busy_queue.export_state()
        encoded = json.dumps(state)
        assert json.loads(encoded)["sequence"] == 6

    def test_round_trip_preserves_status(self, busy_queue, clock):
        state = json.loads(json.dumps(busy_queue.export_state()))
        restored = WorkQueue(clock=clock)
        restored.import_state(state)
        assert restored.get_status() == busy_queue.get_status()

    def test_round_trip_preserves_order_and_records(self, busy_queue, clock):
        state = json.loads(json.dumps(busy_queue.export_state()))
        restored = WorkQueue(clock=clock)
        restored.import_state(state)

        assert [r.id for r in restored.pending()] == [r.id for r in busy_queue.pending()]
        assert restored.get_item("done").result == {"text": "answer", "tokens_used": 12}
        assert restored.get_item("done").route == busy_queue.get_item("done").route
        assert restored.get_item("low-1").batch_id == busy_queue.get_item("low-1").batch_id
        assert restored.index.doc_count == busy_queue.index.doc_count

    def test_unserializable_error_stored_as_text(self, busy_queue):
        state = busy_queue.export_state()
        failed = [r for r in state["history"] if r["id"] == "broken"][0]
        assert failed["status"] == "failed"
        assert failed["error"] == "RuntimeError: boom"

    def test_restored_queue_keeps_working(self, busy_queue, clock):
        restored = WorkQueue(clock=clock)
        restored.import_state(busy_queue.export_state())

        assert restored.get_item("running").status is Status.PROCESSING
        assert restored.complete("running", "ok")
        assert restored.dequeue().id == "urgent"

        new_id = restored.enqueue("explain generators").id
        assert restored.get_item(new_id).sequence > 6
        with pytest.raises(ValidationError):
            restored.enqueue("duplicate", record_id="done")

    def test_import_into_non_empty_queue_rejected(self, busy_queue, clock):
        other = WorkQueue(clock=clock)
        other.enqueue("explain recursion")
        with pytest.raises(ValidationError):
            other.import_state(busy_queue.export_state())

    def test_import_after_activity_rejected(self, busy_queue, clock):
        other = WorkQueue(clock=clock)
        rid = other.enqueue("explain recursion").id
        other.dequeue()
        other.complete(rid)
        with pytest.raises(ValidationError):
            other.import_state(busy_queue.export_state())

    @pytest.mark.parametrize("state", [
        "not a dict",
        {"pending": [{"id": "x"}]},
        {"ledger": {"history": [{"cost": "lots", "timestamp": 1}]}},
    ])
    def test_malformed_snapshot_rejected(self, clock, state):
        with pytest.raises(ValidationError):
            WorkQueue(clock=clock).import_state(state)

    def test_status_mismatch_rejected(self, busy_queue, clock):
        state = busy_queue.export_state()
        state["pending"][0]["status"] = "completed"
        with pytest.raises(ValidationError):
            WorkQueue(clock=clock).import_state(state)

    def test_history_trimmed_to_local_cap(self, busy_queue, clock):
        restored = WorkQueue(max_history=1, clock=clock)
        restored.import_state(busy_queue.export_state())
        assert restored.get_status()["history_size"] == 1
        assert restored.find_item("done") is None
        assert restored.find_item("broken") is not None


class TestSaveLoad:

    def test_file_round_trip(self, busy_queue, clock, tmp_path):
        path = os.path.join(str(tmp_path), "snapshots", "queue.json")
        busy_queue.save(path)
        assert os.path.exists(path)
        assert not [f for f in os.listdir(os.path.dirname(path)) if f.startswith(".tmp-")]

        restored = WorkQueue(clock=clock)
        restored.load(path)
        assert restored.get_status() == busy_queue.get_status()

    def test_missing_file(self, clock, tmp_path):
        with pytest.raises(FileNotFoundError):
            WorkQueue(clock=clock).load(os.path.join(str(tmp_path), "missing.json"))

    def test_corrupt_file(self, clock, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text("{not json")
        with pytest.raises(ValidationError):
            WorkQueue(clock=clock).load(str(path))
