"""
Lifecycle of work orders and extra jobs.

open -> in_progress -> done, cancel from open/in_progress, reopen from done/cancelled.
Every operation mutates the item, appends its events and commits once; any failure
rolls the whole operation back.
"""
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Asset, Person, WorkItem
from ..schemas.work_items import EventKind, WorkItemKind, WorkItemStatus, WorkOrderType
from .activity_conflict import find_blocking_activity, lock_person_activity
from .asset_status import propagate_work_order_change, refresh_asset_status
from .errors import ConflictingActivity, InvalidTransition, NotFound, ValidationError
from .events import EventRecorder, compute_diff
from .time_rules import calc_duration_minutes, ensure_utc, utcnow

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KindPolicy:
    label: str
    # Only one in-progress item per assignee, checked at Start
    single_flight: bool
    # Status changes drive the linked asset's status
    drives_asset_status: bool


KIND_POLICIES = {
    WorkItemKind.work_order.value: KindPolicy("Work order", single_flight=False, drives_asset_status=True),
    WorkItemKind.extra_job.value: KindPolicy("Extra job", single_flight=True, drives_asset_status=False),
}

OPEN = WorkItemStatus.open.value
IN_PROGRESS = WorkItemStatus.in_progress.value
DONE = WorkItemStatus.done.value
CANCELLED = WorkItemStatus.cancelled.value

ALLOWED_FROM = {
    "Start": (OPEN,),
    "Stop": (IN_PROGRESS,),
    "Cancel": (OPEN, IN_PROGRESS),
    "Reopen": (DONE, CANCELLED),
}

# Fields a trusted edit may change, in the order their events are written
EDITABLE_FIELDS = (
    "title",
    "description",
    "type",
    "classification",
    "asset_id",
    "assigned_person_id",
    "start_at",
    "stop_at",
    "defect",
    "cause",
    "solution",
    "status",
)
WORK_ORDER_ONLY_FIELDS = ("type", "classification", "asset_id", "defect", "cause", "solution")


@contextmanager
def _transaction(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


def can_transition(action: str, status: str) -> bool:
    return status in ALLOWED_FROM[action]


def _require(item: WorkItem, action: str) -> None:
    if not can_transition(action, item.status):
        raise InvalidTransition(action, item.status, ALLOWED_FROM[action])


def _policy(item: WorkItem) -> KindPolicy:
    return KIND_POLICIES[item.kind]


def infer_status(start_at: Optional[datetime], stop_at: Optional[datetime]) -> str:
    """Status implied by timestamps alone."""
    if stop_at is not None:
        return DONE
    if start_at is not None:
        return IN_PROGRESS
    return OPEN


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if len(title) < settings.title_min_chars:
        raise ValidationError("title too short")
    if len(title) > settings.title_max_chars:
        raise ValidationError("title too long")
    return title


def _check_references(db: Session, asset_id: Optional[uuid.UUID], person_id: Optional[uuid.UUID]) -> None:
    if asset_id is not None and not db.query(Asset.id).filter(Asset.id == asset_id).first():
        raise ValidationError("bad asset_id")
    if person_id is not None and not db.query(Person.id).filter(Person.id == person_id).first():
        raise ValidationError("bad assigned_person_id")


def get_work_item(db: Session, item_id: uuid.UUID, kind: Optional[str] = None) -> WorkItem:
    query = db.query(WorkItem).filter(WorkItem.id == item_id)
    if kind:
        query = query.filter(WorkItem.kind == kind)
    item = query.first()
    if not item:
        label = KIND_POLICIES[kind].label if kind else "Work item"
        raise NotFound(f"{label} not found")
    return item


def list_work_items(
    db: Session,
    kind: str,
    q: Optional[str] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    asset_id: Optional[uuid.UUID] = None,
    person_id: Optional[uuid.UUID] = None,
    from_utc: Optional[datetime] = None,
    to_utc: Optional[datetime] = None,
    take: int = 50,
    skip: int = 0,
) -> Tuple[int, List[WorkItem]]:
    """
    Filtered, paged list of one kind of work item.

    The window filter keeps items whose [start_at, stop_at] intersects [from, to];
    a missing start or stop is treated as unbounded.
    """
    if take <= 0:
        take = 50
    take = min(take, settings.list_take_max)
    skip = max(skip, 0)

    query = db.query(WorkItem).filter(WorkItem.kind == kind)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(WorkItem.title.ilike(pattern), WorkItem.description.ilike(pattern)))
    if status:
        query = query.filter(WorkItem.status == status)
    if type:
        query = query.filter(WorkItem.type == type)
    if asset_id:
        query = query.filter(WorkItem.asset_id == asset_id)
    if person_id:
        query = query.filter(WorkItem.assigned_person_id == person_id)
    if from_utc is not None or to_utc is not None:
        conditions = []
        if to_utc is not None:
            conditions.append(or_(WorkItem.start_at.is_(None), WorkItem.start_at <= ensure_utc(to_utc)))
        if from_utc is not None:
            conditions.append(or_(WorkItem.stop_at.is_(None), WorkItem.stop_at >= ensure_utc(from_utc)))
        query = query.filter(and_(*conditions))

    total = query.count()
    items = (
        query.order_by(WorkItem.start_at.desc().nullslast(), WorkItem.created_at.desc())
        .offset(skip)
        .limit(take)
        .all()
    )
    return total, items


# ---------------- CREATE ----------------

def create_work_item(
    db: Session,
    kind: str,
    *,
    title: str,
    description: Optional[str] = None,
    type: Optional[str] = None,
    classification: Optional[str] = None,
    asset_id: Optional[uuid.UUID] = None,
    assigned_person_id: Optional[uuid.UUID] = None,
    defect: Optional[str] = None,
    cause: Optional[str] = None,
    solution: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WorkItem:
    kind = _plain(kind)
    if kind not in KIND_POLICIES:
        raise ValidationError(f"unknown kind '{kind}'")
    title = _clean_title(title)
    if kind == WorkItemKind.extra_job.value and asset_id is not None:
        raise ValidationError("extra jobs cannot reference an asset")
    _check_references(db, asset_id, assigned_person_id)

    is_work_order = kind == WorkItemKind.work_order.value
    item = WorkItem(
        id=uuid.uuid4(),
        kind=kind,
        title=title,
        description=description,
        status=OPEN,
        type=_plain(type or WorkOrderType.ad_hoc) if is_work_order else None,
        classification=_plain(classification) if is_work_order else None,
        asset_id=asset_id,
        assigned_person_id=assigned_person_id,
        defect=defect if is_work_order else None,
        cause=cause if is_work_order else None,
        solution=solution if is_work_order else None,
        created_by=actor_id,
    )
    with _transaction(db):
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        item.created_at = recorder.now
        db.add(item)
        recorder.record(EventKind.created, field="title", new_value=title)
        recorder.status_event(EventKind.status_changed, None, OPEN)
        if assigned_person_id is not None:
            recorder.record(EventKind.assigned_changed, field="assigned_person_id", new_value=assigned_person_id)
        if _policy(item).drives_asset_status:
            propagate_work_order_change(db, item)
    db.refresh(item)
    log.info("work_item.created", item_id=str(item.id), kind=kind, correlation_id=str(recorder.correlation_id))
    return item


# ---------------- ACTIONS ----------------

def start_work_item(
    db: Session,
    item_id: uuid.UUID,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
) -> WorkItem:
    item = get_work_item(db, item_id, kind)
    policy = _policy(item)
    with _transaction(db):
        if policy.single_flight and item.assigned_person_id is not None:
            lock_person_activity(db, item.assigned_person_id)
            db.refresh(item)
        _require(item, "Start")
        if policy.single_flight:
            blocker = find_blocking_activity(db, item.assigned_person_id, exclude_item_id=item.id)
            if blocker is not None:
                log.info(
                    "work_item.start_blocked",
                    item_id=str(item.id),
                    person_id=str(item.assigned_person_id),
                    blocker_id=str(blocker.id),
                )
                raise ConflictingActivity(blocker.id, blocker.title)

        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        old_status = item.status
        item.status = IN_PROGRESS
        recorder.status_event(EventKind.started, old_status, IN_PROGRESS)
        if item.start_at is None:
            item.start_at = recorder.now
            recorder.record(EventKind.started, field="start_at", new_value=recorder.now)
        for field in ("stop_at", "duration_minutes"):
            old_value = getattr(item, field)
            if old_value is not None:
                setattr(item, field, None)
                recorder.record(EventKind.started, field=field, old_value=old_value)
        item.updated_at = recorder.now
        if policy.drives_asset_status:
            propagate_work_order_change(db, item)
    db.refresh(item)
    log.info("work_item.started", item_id=str(item.id), kind=item.kind, correlation_id=str(recorder.correlation_id))
    return item


def stop_work_item(
    db: Session,
    item_id: uuid.UUID,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
) -> WorkItem:
    item = get_work_item(db, item_id, kind)
    with _transaction(db):
        _require(item, "Stop")
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        old_status = item.status
        item.status = DONE
        recorder.status_event(EventKind.stopped, old_status, DONE)

        if item.start_at is None:
            item.start_at = recorder.now
            recorder.record(EventKind.stopped, field="start_at", new_value=recorder.now)
        # A start set in the future through a trusted edit must not produce stop < start
        stop_at = max(recorder.now, ensure_utc(item.start_at))
        old_stop = item.stop_at
        item.stop_at = stop_at
        recorder.record(EventKind.stopped, field="stop_at", old_value=old_stop, new_value=stop_at)

        old_duration = item.duration_minutes
        item.duration_minutes = calc_duration_minutes(item.start_at, item.stop_at)
        recorder.record(EventKind.stopped, field="duration_minutes", old_value=old_duration, new_value=item.duration_minutes)
        item.updated_at = recorder.now
        if _policy(item).drives_asset_status:
            propagate_work_order_change(db, item)
    db.refresh(item)
    log.info(
        "work_item.stopped",
        item_id=str(item.id),
        kind=item.kind,
        duration_minutes=item.duration_minutes,
        correlation_id=str(recorder.correlation_id),
    )
    return item


def cancel_work_item(
    db: Session,
    item_id: uuid.UUID,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
) -> WorkItem:
    item = get_work_item(db, item_id, kind)
    with _transaction(db):
        _require(item, "Cancel")
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        old_status = item.status
        item.status = CANCELLED
        recorder.status_event(EventKind.cancelled, old_status, CANCELLED)
        item.updated_at = recorder.now
        if _policy(item).drives_asset_status:
            propagate_work_order_change(db, item)
    db.refresh(item)
    log.info("work_item.cancelled", item_id=str(item.id), kind=item.kind, correlation_id=str(recorder.correlation_id))
    return item


def reopen_work_item(
    db: Session,
    item_id: uuid.UUID,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
) -> WorkItem:
    """
    Back to open with start/stop/duration cleared.

    The cleared values stay in the event log only (one reopened event per field).
    """
    item = get_work_item(db, item_id, kind)
    with _transaction(db):
        _require(item, "Reopen")
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        old_status = item.status
        item.status = OPEN
        recorder.status_event(EventKind.reopened, old_status, OPEN)
        for field in ("start_at", "stop_at", "duration_minutes"):
            old_value = getattr(item, field)
            if old_value is not None:
                setattr(item, field, None)
                recorder.record(EventKind.reopened, field=field, old_value=old_value)
        item.updated_at = recorder.now
        if _policy(item).drives_asset_status:
            propagate_work_order_change(db, item)
    db.refresh(item)
    log.info("work_item.reopened", item_id=str(item.id), kind=item.kind, correlation_id=str(recorder.correlation_id))
    return item


# ---------------- TRUSTED EDIT ----------------

def update_work_item(
    db: Session,
    item_id: uuid.UUID,
    changes: Dict[str, Any],
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
) -> WorkItem:
    """
    Field-level edit allowed in any status.

    A status in `changes` is written as-is: it does not go through Start/Stop/Cancel/Reopen
    and skips their checks, including the one-running-extra-job rule. Each changed field
    gets its own event; duration is recomputed from start_at/stop_at.
    """
    item = get_work_item(db, item_id, kind)
    changes = {k: _plain(v) for k, v in changes.items() if k in EDITABLE_FIELDS}
    if item.kind != WorkItemKind.work_order.value:
        unsupported = [k for k in changes if k in WORK_ORDER_ONLY_FIELDS]
        if unsupported:
            raise ValidationError(f"not editable on extra jobs: {', '.join(sorted(unsupported))}")

    if "title" in changes:
        changes["title"] = _clean_title(changes["title"])
    if "status" in changes and changes["status"] is None:
        raise ValidationError("status cannot be null")
    _check_references(db, changes.get("asset_id"), changes.get("assigned_person_id"))

    start_at = changes["start_at"] if "start_at" in changes else ensure_utc(item.start_at)
    stop_at = changes["stop_at"] if "stop_at" in changes else ensure_utc(item.stop_at)
    if start_at is not None and stop_at is not None and stop_at < start_at:
        raise ValidationError("stop_at must be >= start_at")

    before = {field: _plain(getattr(item, field)) for field in changes}
    diff = {field: values["after"] for field, values in compute_diff(before, changes).items()}
    new_duration = calc_duration_minutes(start_at, stop_at)
    if not diff and new_duration == item.duration_minutes:
        return item

    previous_asset_id = item.asset_id
    with _transaction(db):
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        for field in EDITABLE_FIELDS:
            if field not in diff:
                continue
            old_value = getattr(item, field)
            new_value = diff[field]
            setattr(item, field, new_value)
            if field == "status":
                recorder.status_event(EventKind.status_changed, old_value, new_value)
            elif field == "assigned_person_id":
                recorder.record(EventKind.assigned_changed, field=field, old_value=old_value, new_value=new_value)
            else:
                recorder.record(EventKind.updated, field=field, old_value=old_value, new_value=new_value)
        if new_duration != item.duration_minutes:
            recorder.record(
                EventKind.updated,
                field="duration_minutes",
                old_value=item.duration_minutes,
                new_value=new_duration,
            )
            item.duration_minutes = new_duration
        item.updated_at = recorder.now
        if _policy(item).drives_asset_status and ("status" in diff or "asset_id" in diff):
            propagate_work_order_change(db, item, previous_asset_id=previous_asset_id)
    db.refresh(item)
    log.info(
        "work_item.updated",
        item_id=str(item.id),
        kind=item.kind,
        fields=sorted(diff),
        correlation_id=str(recorder.correlation_id),
    )
    return item


def add_comment(
    db: Session,
    item_id: uuid.UUID,
    message: str,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    kind: Optional[str] = None,
):
    item = get_work_item(db, item_id, kind)
    message = (message or "").strip()
    if not message:
        raise ValidationError("message required")
    with _transaction(db):
        recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
        event = recorder.record(EventKind.comment, message=message)
    db.refresh(event)
    return event


def repair_statuses(db: Session, actor_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
    """
    One-off repair: align work order status and duration with their timestamps.

    A cancelled work order without a stop time keeps its status.

    Returns:
        Number of work orders whose status changed
    """
    changed = 0
    touched_assets = set()
    items = db.query(WorkItem).filter(WorkItem.kind == WorkItemKind.work_order.value).all()
    with _transaction(db):
        for item in items:
            old_status = item.status
            if not (item.status == CANCELLED and item.stop_at is None):
                item.status = infer_status(item.start_at, item.stop_at)
            new_duration = calc_duration_minutes(item.start_at, item.stop_at)
            if item.status == old_status and new_duration == item.duration_minutes:
                continue

            recorder = EventRecorder(db, item, actor_id=actor_id, now=now)
            if item.status != old_status:
                recorder.status_event(EventKind.status_changed, old_status, item.status, message="repair")
                changed += 1
            if new_duration != item.duration_minutes:
                recorder.record(
                    EventKind.updated,
                    field="duration_minutes",
                    old_value=item.duration_minutes,
                    new_value=new_duration,
                    message="repair",
                )
                item.duration_minutes = new_duration
            item.updated_at = recorder.now
            if item.status != old_status and item.asset_id is not None:
                touched_assets.add(item.asset_id)
        # Assets are refreshed once every repaired status is visible to the lookup
        db.flush()
        for asset_id in touched_assets:
            refresh_asset_status(db, asset_id)
    log.info("work_item.statuses_repaired", changed=changed, assets=len(touched_assets))
    return changed
