"""Tests for the append-only event log (cmms.services.events)."""
from datetime import datetime, timezone

import pytest

from cmms.models.models import AppendOnlyViolation, WorkItem, WorkItemEvent
from cmms.services import work_items as svc
from cmms.services.events import (
    EventRecorder,
    compute_diff,
    compute_integrity_hash,
    get_events,
    get_status_events,
    verify_event,
)


def T(hour, minute=0):
    return datetime(2025, 1, 6, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def item(db):
    return svc.create_work_item(db, "work_order", title="Lubricate chain", now=T(7))


class TestAppendOnly:
    """Events can be inserted but never changed or removed."""

    def test_update_is_rejected(self, db, item):
        """Should refuse to flush a modified event."""
        event = get_events(db, item.id)[0]
        event.message = "rewritten"
        with pytest.raises(AppendOnlyViolation):
            db.commit()
        db.rollback()
        assert get_events(db, item.id)[0].message is None

    def test_delete_is_rejected(self, db, item):
        """Should refuse to delete an event."""
        event = get_events(db, item.id)[0]
        db.delete(event)
        with pytest.raises(AppendOnlyViolation):
            db.commit()
        db.rollback()
        assert len(get_events(db, item.id)) == 2


class TestAtomicity:
    """An operation's entity change and its events commit together or not at all."""

    def test_failure_while_appending_rolls_back_transition(self, db, item, monkeypatch):
        """A failure on the second event of Stop should leave the item in progress with no stop events."""
        svc.start_work_item(db, item.id, now=T(8))
        events_before = len(get_events(db, item.id))

        original = EventRecorder.record
        calls = {"n": 0}

        def flaky_record(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disk full")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(EventRecorder, "record", flaky_record)
        with pytest.raises(RuntimeError, match="disk full"):
            svc.stop_work_item(db, item.id, now=T(9))
        monkeypatch.undo()

        reloaded = db.query(WorkItem).filter(WorkItem.id == item.id).one()
        assert reloaded.status == "in_progress"
        assert reloaded.stop_at is None
        assert reloaded.duration_minutes is None
        assert len(get_events(db, item.id)) == events_before

    def test_failure_on_create_leaves_nothing(self, db, monkeypatch):
        """A failure on the first event of Create should leave no item behind."""
        def broken_record(self, *args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(EventRecorder, "record", broken_record)
        with pytest.raises(RuntimeError):
            svc.create_work_item(db, "work_order", title="Never stored")
        monkeypatch.undo()

        assert db.query(WorkItem).count() == 0
        assert db.query(WorkItemEvent).count() == 0


class TestOrderingAndIntegrity:
    """Replay order and integrity hashes."""

    def test_events_ordered_by_time_then_seq(self, db, item):
        """Should return events by timestamp, using seq for events of the same instant."""
        svc.start_work_item(db, item.id, now=T(8))
        svc.stop_work_item(db, item.id, now=T(9))
        events = get_events(db, item.id)
        keys = [(e.created_at_utc, e.seq) for e in events]
        assert keys == sorted(keys)
        assert [e.seq for e in events] == list(range(1, len(events) + 1))

    def test_limit_and_offset(self, db, item):
        """Should page through events."""
        svc.start_work_item(db, item.id, now=T(8))
        all_events = get_events(db, item.id)
        page = get_events(db, item.id, limit=2, offset=1)
        assert [e.id for e in page] == [e.id for e in all_events[1:3]]

    def test_status_events_grouped_by_owner(self, db, item):
        """Should return only status-field events per owner."""
        other = svc.create_work_item(db, "extra_job", title="Tidy store", now=T(7))
        svc.start_work_item(db, item.id, now=T(8))
        grouped = get_status_events(db, [item.id, other.id])
        assert all(e.field == "status" for e in grouped[item.id])
        assert [e.kind for e in grouped[item.id]] == ["status_changed", "started"]
        assert [e.kind for e in grouped[other.id]] == ["status_changed"]

    def test_integrity_hash_detects_tampering(self, db, item):
        """Should verify stored events and fail once a value differs."""
        event = get_events(db, item.id)[0]
        assert event.integrity_hash
        assert verify_event(event)
        db.expunge(event)
        event.new_value = "Something else"
        assert not verify_event(event)

    def test_hash_requires_secret(self, db, item):
        """Should produce no hash when no secret is available."""
        event = get_events(db, item.id)[0]
        assert compute_integrity_hash(event, integrity_secret="") is None


class TestComputeDiff:
    """Tests for compute_diff()."""

    def test_reports_changed_keys_only(self):
        """Should include only keys whose values differ."""
        diff = compute_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": None})
        assert diff == {"b": {"before": 2, "after": 3}}
