"""Tests for the work item lifecycle (cmms.services.work_items)."""
from datetime import datetime, timezone

import pytest

from cmms.models.models import Asset, WorkItem
from cmms.services import work_items as svc
from cmms.services.errors import InvalidTransition, NotFound, ValidationError
from cmms.services.events import get_events
from cmms.services.time_rules import ensure_utc


def T(hour, minute=0, day=6):
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


def _work_order(db, person=None, asset=None, **kwargs):
    return svc.create_work_item(
        db,
        "work_order",
        title=kwargs.pop("title", "Replace bearing"),
        assigned_person_id=person.id if person else None,
        asset_id=asset.id if asset else None,
        now=kwargs.pop("now", T(7)),
        **kwargs,
    )


def _status_path(db, item, *actions):
    funcs = {
        "start": svc.start_work_item,
        "stop": svc.stop_work_item,
        "cancel": svc.cancel_work_item,
        "reopen": svc.reopen_work_item,
    }
    for i, action in enumerate(actions):
        funcs[action](db, item.id, now=T(8 + i))


class TestCreate:
    """Tests for create_work_item()."""

    def test_create_starts_open_without_timestamps(self, db, person):
        """Should create an open item with no start/stop/duration."""
        item = _work_order(db, person=person, classification="reactive")
        assert item.status == "open"
        assert item.start_at is None
        assert item.stop_at is None
        assert item.duration_minutes is None
        assert item.type == "ad_hoc"
        assert item.classification == "reactive"

    def test_create_emits_created_status_and_assignment(self, db, person):
        """Should emit created, status_changed and assigned_changed with one correlation id."""
        item = _work_order(db, person=person)
        events = get_events(db, item.id)
        assert [e.kind for e in events] == ["created", "status_changed", "assigned_changed"]
        assert events[0].field == "title"
        assert events[1].to_status == "open"
        assert events[2].new_value == str(person.id)
        assert len({e.correlation_id for e in events}) == 1
        assert [e.seq for e in events] == [1, 2, 3]

    def test_create_without_assignee_skips_assignment_event(self, db):
        """Should not emit assigned_changed without an assignee."""
        item = _work_order(db)
        assert [e.kind for e in get_events(db, item.id)] == ["created", "status_changed"]

    def test_title_is_trimmed_and_validated(self, db):
        """Should trim titles and reject ones that are too short."""
        item = _work_order(db, title="  Oil leak  ")
        assert item.title == "Oil leak"
        with pytest.raises(ValidationError):
            _work_order(db, title=" x ")

    def test_unknown_references_are_rejected(self, db):
        """Should reject unknown asset or person ids."""
        import uuid
        with pytest.raises(ValidationError, match="bad asset_id"):
            svc.create_work_item(db, "work_order", title="Check", asset_id=uuid.uuid4())
        with pytest.raises(ValidationError, match="bad assigned_person_id"):
            svc.create_work_item(db, "work_order", title="Check", assigned_person_id=uuid.uuid4())
        assert db.query(WorkItem).count() == 0

    def test_extra_job_cannot_reference_asset(self, db, asset):
        """Should reject an asset on an extra job."""
        with pytest.raises(ValidationError):
            svc.create_work_item(db, "extra_job", title="Sweep floor", asset_id=asset.id)

    def test_extra_job_has_no_work_order_fields(self, db):
        """Should leave type and classification empty for extra jobs."""
        job = svc.create_work_item(db, "extra_job", title="Sweep floor", type="preventive")
        assert job.kind == "extra_job"
        assert job.type is None
        assert job.classification is None


class TestTransitions:
    """Tests for start/stop/cancel/reopen."""

    def test_example_start_stop_duration(self, db, person):
        """Start 08:00, stop 10:30 should give 150 minutes and two status events."""
        item = _work_order(db, person=person, classification="reactive")
        svc.start_work_item(db, item.id, now=T(8))
        item = svc.stop_work_item(db, item.id, now=T(10, 30))

        assert item.status == "done"
        assert item.duration_minutes == 150
        assert ensure_utc(item.start_at) == T(8)
        assert ensure_utc(item.stop_at) == T(10, 30)

        transitions = [
            (e.from_status, e.to_status)
            for e in get_events(db, item.id)
            if e.field == "status" and e.kind in ("started", "stopped")
        ]
        assert transitions == [("open", "in_progress"), ("in_progress", "done")]

    @pytest.mark.parametrize(
        "setup, action, allowed",
        [
            ((), "start", True),
            ((), "stop", False),
            ((), "cancel", True),
            ((), "reopen", False),
            (("start",), "start", False),
            (("start",), "stop", True),
            (("start",), "cancel", True),
            (("start",), "reopen", False),
            (("start", "stop"), "start", False),
            (("start", "stop"), "stop", False),
            (("start", "stop"), "cancel", False),
            (("start", "stop"), "reopen", True),
            (("cancel",), "start", False),
            (("cancel",), "stop", False),
            (("cancel",), "cancel", False),
            (("cancel",), "reopen", True),
        ],
    )
    def test_transition_legality(self, db, setup, action, allowed):
        """Each action should succeed only from its allowed statuses."""
        item = _work_order(db)
        _status_path(db, item, *setup)
        before = len(get_events(db, item.id))
        func = {
            "start": svc.start_work_item,
            "stop": svc.stop_work_item,
            "cancel": svc.cancel_work_item,
            "reopen": svc.reopen_work_item,
        }[action]
        if allowed:
            func(db, item.id, now=T(15))
            assert len(get_events(db, item.id)) > before
        else:
            with pytest.raises(InvalidTransition):
                func(db, item.id, now=T(15))
            assert len(get_events(db, item.id)) == before

    def test_invalid_transition_message(self, db):
        """Should name the allowed statuses in the error."""
        item = _work_order(db)
        with pytest.raises(InvalidTransition) as exc:
            svc.stop_work_item(db, item.id)
        assert exc.value.detail == "Stop allowed only when Status=in_progress."
        assert exc.value.status_code == 400

    def test_start_keeps_existing_start(self, db):
        """Should keep a start time set by a trusted edit and not emit a start_at event."""
        item = _work_order(db)
        svc.update_work_item(db, item.id, {"start_at": T(6)}, now=T(7))
        item = svc.start_work_item(db, item.id, now=T(8))
        assert ensure_utc(item.start_at) == T(6)
        start_events = [e for e in get_events(db, item.id) if e.kind == "started"]
        assert [e.field for e in start_events] == ["status"]

    def test_stop_without_start_backfills_start(self, db):
        """Should set start to the stop time when an in-progress item has no start."""
        item = _work_order(db)
        svc.update_work_item(db, item.id, {"status": "in_progress"}, now=T(7))
        item = svc.stop_work_item(db, item.id, now=T(9))
        assert ensure_utc(item.start_at) == T(9)
        assert ensure_utc(item.stop_at) == T(9)
        assert item.duration_minutes == 0

    def test_cancel_keeps_timestamps(self, db):
        """Should leave start_at untouched on cancel."""
        item = _work_order(db)
        svc.start_work_item(db, item.id, now=T(8))
        item = svc.cancel_work_item(db, item.id, now=T(9))
        assert item.status == "cancelled"
        assert ensure_utc(item.start_at) == T(8)
        assert item.stop_at is None

    def test_reopen_clears_timestamps_and_logs_old_values(self, db):
        """Should reset start/stop/duration and keep their old values in reopened events."""
        item = _work_order(db)
        svc.start_work_item(db, item.id, now=T(8))
        svc.stop_work_item(db, item.id, now=T(9))
        item = svc.reopen_work_item(db, item.id, now=T(10))

        assert item.status == "open"
        assert item.start_at is None and item.stop_at is None and item.duration_minutes is None
        reopened = {e.field: e for e in get_events(db, item.id) if e.kind == "reopened"}
        assert set(reopened) == {"status", "start_at", "stop_at", "duration_minutes"}
        assert reopened["start_at"].old_value == T(8).isoformat()
        assert reopened["duration_minutes"].old_value == "60"
        assert reopened["status"].from_status == "done"

    def test_unknown_item(self, db):
        """Should raise NotFound for an unknown id or the wrong kind."""
        import uuid
        with pytest.raises(NotFound):
            svc.start_work_item(db, uuid.uuid4())
        item = _work_order(db)
        with pytest.raises(NotFound):
            svc.start_work_item(db, item.id, kind="extra_job")

    def test_one_correlation_id_per_operation(self, db):
        """All events of one stop should share a correlation id distinct from the start's."""
        item = _work_order(db)
        svc.start_work_item(db, item.id, now=T(8))
        svc.stop_work_item(db, item.id, now=T(9))
        events = get_events(db, item.id)
        started = {e.correlation_id for e in events if e.kind == "started"}
        stopped = {e.correlation_id for e in events if e.kind == "stopped"}
        assert len(started) == 1 and len(stopped) == 1
        assert started != stopped


class TestUpdate:
    """Tests for update_work_item() (trusted edit)."""

    def test_field_changes_emit_one_event_each(self, db, person):
        """Should emit updated per field and assigned_changed for the assignee."""
        item = _work_order(db)
        svc.update_work_item(
            db, item.id, {"title": "Replace seal", "assigned_person_id": person.id, "cause": "wear"}, now=T(8)
        )
        events = [e for e in get_events(db, item.id) if e.seq > 2]
        assert [(e.kind, e.field) for e in events] == [
            ("updated", "title"),
            ("assigned_changed", "assigned_person_id"),
            ("updated", "cause"),
        ]
        assert events[0].old_value == "Replace bearing"
        assert events[0].new_value == "Replace seal"

    def test_unchanged_values_emit_nothing(self, db):
        """Should not emit events when nothing changes."""
        item = _work_order(db)
        before = len(get_events(db, item.id))
        svc.update_work_item(db, item.id, {"title": "Replace bearing"}, now=T(8))
        assert len(get_events(db, item.id)) == before

    def test_status_change_bypasses_guards(self, db):
        """Should allow done -> in_progress through the trusted path with a status_changed event."""
        item = _work_order(db)
        _status_path(db, item, "start", "stop")
        item = svc.update_work_item(db, item.id, {"status": "in_progress"}, now=T(12))
        assert item.status == "in_progress"
        last = get_events(db, item.id)[-1]
        assert last.kind == "status_changed"
        assert (last.from_status, last.to_status) == ("done", "in_progress")

    def test_duration_recomputed_from_timestamps(self, db):
        """Should recompute duration when start or stop changes."""
        item = _work_order(db)
        item = svc.update_work_item(db, item.id, {"start_at": T(8), "stop_at": T(9, 45)}, now=T(10))
        assert item.duration_minutes == 105
        item = svc.update_work_item(db, item.id, {"stop_at": None}, now=T(11))
        assert item.duration_minutes is None

    def test_stop_before_start_rejected(self, db):
        """Should reject stop_at earlier than start_at."""
        item = _work_order(db)
        with pytest.raises(ValidationError):
            svc.update_work_item(db, item.id, {"start_at": T(9), "stop_at": T(8)})

    def test_work_order_fields_rejected_on_extra_jobs(self, db):
        """Should refuse work-order-only fields on an extra job."""
        job = svc.create_work_item(db, "extra_job", title="Sweep floor")
        with pytest.raises(ValidationError):
            svc.update_work_item(db, job.id, {"classification": "reactive"})


class TestCommentsAndRepair:
    """Tests for add_comment() and repair_statuses()."""

    def test_comment_appends_event(self, db):
        """Should append a comment event with the message."""
        item = _work_order(db)
        event = svc.add_comment(db, item.id, "  waiting for parts ", actor_id="tech-1", now=T(9))
        assert event.kind == "comment"
        assert event.message == "waiting for parts"
        assert event.actor_id == "tech-1"
        assert db.get(WorkItem, item.id).status == "open"

    def test_empty_comment_rejected(self, db):
        """Should reject blank comments."""
        item = _work_order(db)
        with pytest.raises(ValidationError):
            svc.add_comment(db, item.id, "   ")

    def test_repair_infers_status_from_timestamps(self, db):
        """Should align status with timestamps and tag the events as repair."""
        stopped = _work_order(db, title="Has stop")
        svc.update_work_item(db, stopped.id, {"start_at": T(8), "stop_at": T(9)}, now=T(10))
        started = _work_order(db, title="Has start")
        svc.update_work_item(db, started.id, {"start_at": T(8)}, now=T(10))
        cancelled = _work_order(db, title="Cancelled")
        svc.cancel_work_item(db, cancelled.id, now=T(8))

        changed = svc.repair_statuses(db, now=T(11))

        assert changed == 2
        assert db.get(WorkItem, stopped.id).status == "done"
        assert db.get(WorkItem, started.id).status == "in_progress"
        assert db.get(WorkItem, cancelled.id).status == "cancelled"
        last = get_events(db, stopped.id)[-1]
        assert last.kind == "status_changed" and last.message == "repair"

    @pytest.mark.parametrize("running_first", [True, False])
    def test_repair_keeps_asset_in_maintenance(self, db, asset, running_first):
        """Should leave the asset in maintenance when repair moves one work order in and another out."""
        def finished():
            wo = _work_order(db, asset=asset, title="Was running")
            svc.update_work_item(
                db, wo.id, {"start_at": T(8), "stop_at": T(9), "status": "in_progress"}, now=T(10)
            )
            return wo

        def started():
            wo = _work_order(db, asset=asset, title="Was open")
            svc.update_work_item(db, wo.id, {"start_at": T(8)}, now=T(10))
            return wo

        if running_first:
            was_running, was_open = finished(), started()
        else:
            was_open, was_running = started(), finished()
        db.expire_all()
        assert db.get(Asset, asset.id).status == "in_maintenance"
        assert db.get(WorkItem, was_open.id).status == "open"

        assert svc.repair_statuses(db, now=T(11)) == 2

        db.expire_all()
        assert db.get(WorkItem, was_running.id).status == "done"
        assert db.get(WorkItem, was_open.id).status == "in_progress"
        assert db.get(Asset, asset.id).status == "in_maintenance"

    def test_repair_releases_asset(self, db, asset):
        """Should set the asset operational when repair finishes its only running work order."""
        wo = _work_order(db, asset=asset)
        svc.update_work_item(db, wo.id, {"start_at": T(8), "stop_at": T(9), "status": "in_progress"}, now=T(10))

        svc.repair_statuses(db, now=T(11))

        db.expire_all()
        assert db.get(Asset, asset.id).status == "operational"
