"""
Timeline reconstruction.

Turns work items (their labor entries, duration fields or status events) into worked
segments clipped to a window [from, to). Segments are derived on demand and never stored.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models.models import LaborLogEntry, WorkItem, WorkItemEvent
from ..schemas.work_items import EventKind, WorkItemKind, WorkOrderClassification, WorkOrderType
from .time_rules import ensure_utc, minutes_between, utcnow


# Replayed segments shorter than this are noise from near-simultaneous events
MIN_SEGMENT_MINUTES = 0.01

CATEGORIES = ("pm", "proactive", "reactive", "extra", "other")

_OPENING_KINDS = {EventKind.started.value}
_CLOSING_KINDS = {EventKind.stopped.value, EventKind.cancelled.value}


@dataclass(frozen=True)
class Segment:
    category: str
    start_utc: datetime
    stop_utc: datetime
    item_id: uuid.UUID
    person_id: Optional[uuid.UUID] = None
    asset_id: Optional[uuid.UUID] = None
    is_open: bool = False
    # Placed from a labor entry; reported on the day it was logged
    logged: bool = False

    @property
    def minutes(self) -> float:
        return minutes_between(self.start_utc, self.stop_utc)

    def clipped(self, from_utc: datetime, to_utc: datetime) -> Optional["Segment"]:
        window = clip(self.start_utc, self.stop_utc, from_utc, to_utc)
        if window is None:
            return None
        return Segment(
            category=self.category,
            start_utc=window[0],
            stop_utc=window[1],
            item_id=self.item_id,
            person_id=self.person_id,
            asset_id=self.asset_id,
            is_open=self.is_open,
            logged=self.logged,
        )


def classify(kind: str, classification: Optional[str], type: Optional[str]) -> str:
    """Reporting category of a work item."""
    if kind == WorkItemKind.extra_job.value:
        return "extra"
    if classification == WorkOrderClassification.proactive.value:
        return "proactive"
    if classification == WorkOrderClassification.reactive.value:
        return "reactive"
    if type == WorkOrderType.preventive.value:
        return "pm"
    return "other"


def classify_item(item: WorkItem) -> str:
    return classify(item.kind, item.classification, item.type)


def clip(
    start: datetime,
    stop: datetime,
    from_utc: datetime,
    to_utc: datetime,
) -> Optional[Tuple[datetime, datetime]]:
    """Intersection of [start, stop] with [from_utc, to_utc), or None when empty."""
    lo = max(ensure_utc(start), ensure_utc(from_utc))
    hi = min(ensure_utc(stop), ensure_utc(to_utc))
    if hi <= lo:
        return None
    return lo, hi


def reconstruct_work_order(
    item: WorkItem,
    from_utc: datetime,
    to_utc: datetime,
    labor_entries: Sequence[LaborLogEntry] = (),
    person_id: Optional[uuid.UUID] = None,
) -> List[Segment]:
    """
    Worked segments of one work order.

    Labor entries of the target person (all people when person_id is None) win over the
    duration fields. Each entry covers [created_at - minutes, created_at] and counts when
    created_at falls inside the window; entries are not clipped.

    Without labor, a set duration_minutes gives one segment
    [start_at or created_at, stop_at or start + duration] clipped to the window. When a
    person is targeted, only the assignee gets this fallback segment.
    """
    from_utc = ensure_utc(from_utc)
    to_utc = ensure_utc(to_utc)
    category = classify_item(item)

    entries = [e for e in labor_entries if person_id is None or e.person_id == person_id]
    if entries:
        segments = []
        for entry in sorted(entries, key=lambda e: ensure_utc(e.created_at)):
            end = ensure_utc(entry.created_at)
            if not (from_utc <= end < to_utc):
                continue
            segments.append(
                Segment(
                    category=category,
                    start_utc=end - timedelta(minutes=entry.minutes),
                    stop_utc=end,
                    item_id=item.id,
                    person_id=entry.person_id,
                    asset_id=item.asset_id,
                    logged=True,
                )
            )
        return segments

    if person_id is not None and item.assigned_person_id != person_id:
        return []
    if item.duration_minutes is None:
        return []
    start = ensure_utc(item.start_at or item.created_at)
    stop = ensure_utc(item.stop_at) if item.stop_at else start + timedelta(minutes=item.duration_minutes)
    segment = Segment(
        category=category,
        start_utc=start,
        stop_utc=stop,
        item_id=item.id,
        person_id=item.assigned_person_id,
        asset_id=item.asset_id,
    ).clipped(from_utc, to_utc)
    return [segment] if segment else []


def reconstruct_extra_job(
    item: WorkItem,
    events: Iterable[WorkItemEvent],
    from_utc: datetime,
    to_utc: datetime,
    now: Optional[datetime] = None,
) -> List[Segment]:
    """
    Replay status events: started opens a segment, stopped or cancelled closes it.

    A segment still open after the last event runs until `now`.
    """
    now = ensure_utc(now) if now else utcnow()
    status_events = sorted(
        (e for e in events if e.field == "status"),
        key=lambda e: (ensure_utc(e.created_at_utc), e.seq),
    )

    raw: List[Tuple[datetime, datetime, bool]] = []
    last_start: Optional[datetime] = None
    for event in status_events:
        at = ensure_utc(event.created_at_utc)
        if event.kind in _OPENING_KINDS:
            last_start = at
        elif event.kind in _CLOSING_KINDS and last_start is not None:
            raw.append((last_start, at, False))
            last_start = None
    if last_start is not None:
        raw.append((last_start, now, True))

    segments = []
    for start, stop, is_open in raw:
        segment = Segment(
            category="extra",
            start_utc=start,
            stop_utc=stop,
            item_id=item.id,
            person_id=item.assigned_person_id,
            is_open=is_open,
        ).clipped(from_utc, to_utc)
        if segment is not None and segment.minutes >= MIN_SEGMENT_MINUTES:
            segments.append(segment)
    return segments


def reconstruct_item(
    item: WorkItem,
    from_utc: datetime,
    to_utc: datetime,
    events: Iterable[WorkItemEvent] = (),
    labor_entries: Sequence[LaborLogEntry] = (),
    person_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> List[Segment]:
    if item.kind == WorkItemKind.extra_job.value:
        if person_id is not None and item.assigned_person_id != person_id:
            return []
        return reconstruct_extra_job(item, events, from_utc, to_utc, now=now)
    return reconstruct_work_order(item, from_utc, to_utc, labor_entries=labor_entries, person_id=person_id)
