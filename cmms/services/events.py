"""
Work item event log.
Append-only audit trail with integrity hashing; one correlation id per logical operation.
"""
import hashlib
import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import WorkItem, WorkItemEvent
from .time_rules import ensure_utc, utcnow


def to_event_value(value) -> Optional[str]:
    """Render a field value the way it is stored in old_value/new_value."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    return str(value)


def compute_integrity_hash(event: WorkItemEvent, integrity_secret: Optional[str] = None) -> Optional[str]:
    """
    SHA256 over a canonical JSON rendering of the event.

    Args:
        event: Event to hash
        integrity_secret: Secret for the hash (defaults to EVENT_INTEGRITY_SECRET, then JWT_SECRET)

    Returns:
        Hex digest, or None when no secret is configured
    """
    if integrity_secret is None:
        integrity_secret = settings.event_integrity_secret or settings.jwt_secret
    if not integrity_secret:
        return None

    canonical_data = {
        "owner_id": str(event.owner_id),
        "seq": event.seq,
        "kind": event.kind,
        "field": event.field,
        "old_value": event.old_value,
        "new_value": event.new_value,
        "message": event.message,
        "actor_id": event.actor_id,
        "correlation_id": str(event.correlation_id) if event.correlation_id else None,
        "from_status": event.from_status,
        "to_status": event.to_status,
        "created_at_utc": ensure_utc(event.created_at_utc).isoformat(),
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

    hash_input = f"{canonical_json}:{integrity_secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def verify_event(event: WorkItemEvent, integrity_secret: Optional[str] = None) -> bool:
    return event.integrity_hash == compute_integrity_hash(event, integrity_secret)


class EventRecorder:
    """
    Collects the events of one operation on one work item.

    Every event shares the recorder's correlation id and timestamp. Events are only
    added to the session; committing is the caller's job so that the entity change
    and its events land in the same transaction.
    """

    def __init__(
        self,
        db: Session,
        owner: WorkItem,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[uuid.UUID] = None,
    ):
        self.db = db
        self.owner = owner
        self.actor_id = actor_id
        self.now = ensure_utc(now) if now else utcnow()
        self.correlation_id = correlation_id or uuid.uuid4()
        self.events: List[WorkItemEvent] = []
        self._next_seq: Optional[int] = None

    def _take_seq(self) -> int:
        if self._next_seq is None:
            current = (
                self.db.query(func.max(WorkItemEvent.seq))
                .filter(WorkItemEvent.owner_id == self.owner.id)
                .scalar()
            )
            self._next_seq = (current or 0) + 1
        seq = self._next_seq
        self._next_seq += 1
        return seq

    def record(
        self,
        kind,
        field: Optional[str] = None,
        old_value=None,
        new_value=None,
        message: Optional[str] = None,
        from_status=None,
        to_status=None,
    ) -> WorkItemEvent:
        event = WorkItemEvent(
            id=uuid.uuid4(),
            owner_id=self.owner.id,
            seq=self._take_seq(),
            created_at_utc=self.now,
            actor_id=self.actor_id,
            kind=to_event_value(kind),
            field=field,
            old_value=to_event_value(old_value),
            new_value=to_event_value(new_value),
            message=message,
            correlation_id=self.correlation_id,
            from_status=to_event_value(from_status),
            to_status=to_event_value(to_status),
        )
        event.integrity_hash = compute_integrity_hash(event)
        self.db.add(event)
        self.events.append(event)
        return event

    def status_event(self, kind, old_status, new_status, message: Optional[str] = None) -> WorkItemEvent:
        return self.record(
            kind,
            field="status",
            old_value=old_status,
            new_value=new_status,
            message=message,
            from_status=old_status,
            to_status=new_status,
        )


def get_events(
    db: Session,
    owner_id: uuid.UUID,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[WorkItemEvent]:
    """
    Events of one work item in replay order (time, then insertion order).
    """
    query = (
        db.query(WorkItemEvent)
        .filter(WorkItemEvent.owner_id == owner_id)
        .order_by(WorkItemEvent.created_at_utc.asc(), WorkItemEvent.seq.asc())
    )
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_status_events(db: Session, owner_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, List[WorkItemEvent]]:
    """
    Status-field events for many work items, grouped by owner in replay order.
    """
    ids = list(owner_ids)
    grouped: Dict[uuid.UUID, List[WorkItemEvent]] = {owner_id: [] for owner_id in ids}
    if not ids:
        return grouped
    rows = (
        db.query(WorkItemEvent)
        .filter(WorkItemEvent.owner_id.in_(ids), WorkItemEvent.field == "status")
        .order_by(WorkItemEvent.owner_id, WorkItemEvent.created_at_utc.asc(), WorkItemEvent.seq.asc())
        .all()
    )
    for row in rows:
        grouped.setdefault(row.owner_id, []).append(row)
    return grouped


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Args:
        before: Before state
        after: After state

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
