"""
Worked-time reporting.

Groups reconstructed segments per person or per asset (optionally per local day), sums
minutes per category and relates them to the scheduled capacity of the working calendar.
Read-only: nothing here writes to the database.
"""
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from ..models.models import LaborLogEntry, WorkItem, WorkItemEvent
from ..schemas.work_items import WorkItemKind, WorkItemStatus
from .calendar import (
    UNIT_SCOPE,
    DbPersonSchedule,
    DbWorkingCalendar,
    PersonSchedule,
    WorkingCalendar,
    default_shift_window,
    fallback_scheduled_minutes,
    unit_timezone,
)
from .errors import CalendarUnavailable, ReportCancelled, ValidationError
from .events import get_status_events
from .people import resolve_asset_names, resolve_person_names
from .time_rules import ensure_utc, local_day_bounds, local_days, minutes_between, utc_to_local, utcnow
from .timeline import CATEGORIES, Segment, reconstruct_item

log = structlog.get_logger(__name__)

GROUP_BY_PERSON = "person"
GROUP_BY_ASSET = "asset"


@dataclass
class ReportFilters:
    person_ids: Optional[List[uuid.UUID]] = None
    asset_ids: Optional[List[uuid.UUID]] = None
    kinds: Optional[List[str]] = None


@dataclass
class ReportRow:
    id: uuid.UUID
    name: str
    day: Optional[date]
    minutes_by_category: Dict[str, int]
    total_minutes: int
    scheduled_minutes: int
    worked_pct: Optional[float]
    reactive_pct: Optional[float]
    overtime_minutes: Optional[int]
    timezone: str
    calendar_fallback: bool = False
    segments: List[Segment] = field(default_factory=list)


def percentage(part: float, whole: float) -> Optional[float]:
    """part / whole * 100 rounded to one decimal; None when whole is zero. Not clamped."""
    if not whole:
        return None
    return round(part / whole * 100, 1)


def split_by_day(segment: Segment, timezone: str) -> List[Tuple[date, Segment]]:
    """
    Cut a segment at local midnights; the pieces add up to the whole segment.

    A logged labor segment is not cut: it stays whole on the local day it was logged.
    """
    if segment.logged:
        return [(utc_to_local(segment.stop_utc, timezone).date(), segment)]
    pieces = []
    for day in local_days(segment.start_utc, segment.stop_utc, timezone):
        day_start, day_end = local_day_bounds(day, timezone)
        piece = segment.clipped(day_start, day_end)
        if piece is not None:
            pieces.append((day, piece))
    return pieces


def overtime_minutes(
    segments: Sequence[Segment],
    person_id: uuid.UUID,
    timezone: str,
    person_schedule: PersonSchedule,
) -> Tuple[Optional[int], bool]:
    """
    Minutes worked past the end of the shift of the first segment's local weekday.

    Returns:
        (overtime, used_fallback); overtime is None without segments or without a shift that day
    """
    if not segments:
        return None, False
    first = min(segments, key=lambda s: s.start_utc)
    latest_end = max(s.stop_utc for s in segments)
    fallback = False
    try:
        day = utc_to_local(first.start_utc, timezone).date()
        shift = person_schedule.get_shift_window(person_id, day)
    except CalendarUnavailable as exc:
        log.warning("report.shift_fallback", person_id=str(person_id), detail=exc.detail)
        day = first.start_utc.date()
        shift = default_shift_window(day)
        fallback = True
    if shift is None:
        return None, fallback
    _, shift_end = shift.bounds_utc(day)
    return int(round(max(0.0, minutes_between(shift_end, latest_end)))), fallback


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ReportCancelled("report cancelled")


def _window_candidates(
    db: Session,
    from_utc: datetime,
    to_utc: datetime,
    group_by: str,
    filters: ReportFilters,
) -> List[WorkItem]:
    kinds = filters.kinds or [k.value for k in WorkItemKind]
    if group_by == GROUP_BY_ASSET:
        kinds = [k for k in kinds if k == WorkItemKind.work_order.value]

    items: List[WorkItem] = []
    if WorkItemKind.work_order.value in kinds:
        labor_owner_ids = select(LaborLogEntry.owner_id).where(
            LaborLogEntry.created_at >= from_utc, LaborLogEntry.created_at < to_utc
        )
        query = db.query(WorkItem).filter(
            WorkItem.kind == WorkItemKind.work_order.value,
            or_(
                and_(
                    func.coalesce(WorkItem.start_at, WorkItem.created_at) < to_utc,
                    or_(WorkItem.stop_at.is_(None), WorkItem.stop_at >= from_utc),
                ),
                WorkItem.id.in_(labor_owner_ids),
            ),
        )
        if filters.asset_ids:
            query = query.filter(WorkItem.asset_id.in_(filters.asset_ids))
        if group_by == GROUP_BY_ASSET:
            query = query.filter(WorkItem.asset_id.isnot(None))
        items.extend(query.all())

    if WorkItemKind.extra_job.value in kinds:
        bounds = (
            db.query(
                WorkItemEvent.owner_id.label("owner_id"),
                func.min(WorkItemEvent.created_at_utc).label("first_at"),
                func.max(WorkItemEvent.created_at_utc).label("last_at"),
            )
            .filter(WorkItemEvent.field == "status")
            .group_by(WorkItemEvent.owner_id)
            .subquery()
        )
        query = (
            db.query(WorkItem)
            .join(bounds, bounds.c.owner_id == WorkItem.id)
            .filter(
                WorkItem.kind == WorkItemKind.extra_job.value,
                bounds.c.first_at < to_utc,
                or_(bounds.c.last_at >= from_utc, WorkItem.status == WorkItemStatus.in_progress.value),
            )
        )
        if filters.person_ids:
            query = query.filter(WorkItem.assigned_person_id.in_(filters.person_ids))
        items.extend(query.all())
    return items


def _labor_by_owner(db: Session, owner_ids: List[uuid.UUID]) -> Dict[uuid.UUID, List[LaborLogEntry]]:
    grouped: Dict[uuid.UUID, List[LaborLogEntry]] = defaultdict(list)
    if not owner_ids:
        return grouped
    for entry in db.query(LaborLogEntry).filter(LaborLogEntry.owner_id.in_(owner_ids)).all():
        grouped[entry.owner_id].append(entry)
    return grouped


def collect_segments(
    db: Session,
    group_by: str,
    from_utc: datetime,
    to_utc: datetime,
    filters: ReportFilters,
    now: datetime,
) -> Dict[uuid.UUID, List[Segment]]:
    """Segments in the window keyed by person or asset id."""
    items = _window_candidates(db, from_utc, to_utc, group_by, filters)
    work_order_ids = [i.id for i in items if i.kind == WorkItemKind.work_order.value]
    extra_job_ids = [i.id for i in items if i.kind == WorkItemKind.extra_job.value]
    labor = _labor_by_owner(db, work_order_ids)
    events = get_status_events(db, extra_job_ids)
    wanted_people = set(filters.person_ids) if filters.person_ids else None

    grouped: Dict[uuid.UUID, List[Segment]] = defaultdict(list)
    for item in items:
        entries = labor.get(item.id, [])
        if group_by == GROUP_BY_ASSET:
            grouped[item.asset_id].extend(
                reconstruct_item(item, from_utc, to_utc, labor_entries=entries, now=now)
            )
            continue
        people = {item.assigned_person_id} | {e.person_id for e in entries}
        people.discard(None)
        if wanted_people is not None:
            people &= wanted_people
        for person_id in people:
            grouped[person_id].extend(
                reconstruct_item(
                    item,
                    from_utc,
                    to_utc,
                    events=events.get(item.id, []),
                    labor_entries=entries,
                    person_id=person_id,
                    now=now,
                )
            )
    return {key: segments for key, segments in grouped.items() if segments}


def _group_timezone(group_by: str, key: uuid.UUID, person_schedule: PersonSchedule) -> Tuple[str, bool]:
    try:
        if group_by == GROUP_BY_PERSON:
            return person_schedule.get_timezone(key), False
        return unit_timezone(), False
    except CalendarUnavailable as exc:
        log.warning("report.timezone_fallback", group_by=group_by, key=str(key), timezone=exc.timezone)
        return "UTC", True


def _scheduled(
    calendar: WorkingCalendar,
    from_utc: datetime,
    to_utc: datetime,
    scope,
) -> Tuple[float, bool]:
    try:
        return calendar.get_scheduled_minutes(from_utc, to_utc, scope), False
    except CalendarUnavailable as exc:
        log.warning("report.calendar_fallback", scope=str(scope), detail=exc.detail)
        return fallback_scheduled_minutes(calendar, from_utc, to_utc, scope), True


def _make_row(
    group_by: str,
    key: uuid.UUID,
    name: str,
    day: Optional[date],
    segments: List[Segment],
    capacity_from: datetime,
    capacity_to: datetime,
    timezone: str,
    timezone_fallback: bool,
    calendar: WorkingCalendar,
    person_schedule: PersonSchedule,
) -> ReportRow:
    minutes: Dict[str, float] = {category: 0.0 for category in CATEGORIES}
    for segment in segments:
        minutes[segment.category] += segment.minutes
    total = sum(minutes.values())

    scope = key if group_by == GROUP_BY_PERSON else UNIT_SCOPE
    scheduled, calendar_fallback = _scheduled(calendar, capacity_from, capacity_to, scope)

    overtime = None
    if group_by == GROUP_BY_PERSON:
        overtime, shift_fallback = overtime_minutes(segments, key, timezone, person_schedule)
        calendar_fallback = calendar_fallback or shift_fallback

    return ReportRow(
        id=key,
        name=name,
        day=day,
        minutes_by_category={category: int(round(value)) for category, value in minutes.items()},
        total_minutes=int(round(total)),
        scheduled_minutes=int(round(scheduled)),
        worked_pct=percentage(total, scheduled),
        reactive_pct=percentage(minutes["reactive"], scheduled),
        overtime_minutes=overtime,
        timezone=timezone,
        calendar_fallback=calendar_fallback or timezone_fallback,
        segments=sorted(segments, key=lambda s: s.start_utc),
    )


def build_report(
    db: Session,
    group_by: str,
    from_utc: datetime,
    to_utc: datetime,
    filters: Optional[ReportFilters] = None,
    by_day: bool = False,
    calendar: Optional[WorkingCalendar] = None,
    person_schedule: Optional[PersonSchedule] = None,
    now: Optional[datetime] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[ReportRow]:
    """
    Worked-time report over [from_utc, to_utc).

    Args:
        group_by: "person" or "asset"
        filters: Optional person/asset/kind restrictions; requested ids get a row even without work
        by_day: One row per group and local day (person timezone, unit timezone for assets);
            logged labor is counted whole on the day it was logged, as in the summary rows
        calendar: Working calendar for scheduled capacity (DB-backed by default)
        person_schedule: Shift windows for overtime (DB-backed by default)
        now: End of still-running extra job segments
        cancel_event: Checked between groups; when set the report aborts with ReportCancelled

    Returns:
        Rows sorted by name, then day
    """
    if group_by not in (GROUP_BY_PERSON, GROUP_BY_ASSET):
        raise ValidationError("group_by must be 'person' or 'asset'")
    from_utc = ensure_utc(from_utc)
    to_utc = ensure_utc(to_utc)
    if to_utc <= from_utc:
        raise ValidationError("to must be after from")
    filters = filters or ReportFilters()
    calendar = calendar or DbWorkingCalendar(db)
    person_schedule = person_schedule or DbPersonSchedule(db)
    now = ensure_utc(now) if now else utcnow()

    _check_cancelled(cancel_event)
    grouped = collect_segments(db, group_by, from_utc, to_utc, filters, now)
    requested = filters.person_ids if group_by == GROUP_BY_PERSON else filters.asset_ids
    for key in requested or []:
        grouped.setdefault(key, [])

    if group_by == GROUP_BY_PERSON:
        names = resolve_person_names(db, grouped.keys())
    else:
        names = resolve_asset_names(db, grouped.keys())

    rows: List[ReportRow] = []
    for key, segments in grouped.items():
        _check_cancelled(cancel_event)
        name = names.get(key, "Unknown")
        timezone, timezone_fallback = _group_timezone(group_by, key, person_schedule)
        if not by_day:
            rows.append(
                _make_row(
                    group_by, key, name, None, segments, from_utc, to_utc,
                    timezone, timezone_fallback, calendar, person_schedule,
                )
            )
            continue

        per_day: Dict[date, List[Segment]] = defaultdict(list)
        for segment in segments:
            for day, piece in split_by_day(segment, timezone):
                per_day[day].append(piece)
        for day in local_days(from_utc, to_utc, timezone):
            day_start, day_end = local_day_bounds(day, timezone)
            rows.append(
                _make_row(
                    group_by, key, name, day, per_day.get(day, []),
                    max(day_start, from_utc), min(day_end, to_utc),
                    timezone, timezone_fallback, calendar, person_schedule,
                )
            )

    rows.sort(key=lambda r: (r.name.lower(), str(r.id), r.day or date.min))
    log.info(
        "report.built",
        group_by=group_by,
        from_utc=from_utc.isoformat(),
        to_utc=to_utc.isoformat(),
        by_day=by_day,
        rows=len(rows),
    )
    return rows


# ---------------- Labor and asset KPIs ----------------

def labor_report(db: Session, from_utc: Optional[datetime] = None, to_utc: Optional[datetime] = None) -> List[dict]:
    """Logged labor minutes per person with the number of distinct work orders."""
    query = db.query(
        LaborLogEntry.person_id,
        func.sum(LaborLogEntry.minutes).label("total_minutes"),
        func.count(func.distinct(LaborLogEntry.owner_id)).label("work_order_count"),
    )
    if from_utc is not None:
        query = query.filter(LaborLogEntry.created_at >= ensure_utc(from_utc))
    if to_utc is not None:
        query = query.filter(LaborLogEntry.created_at <= ensure_utc(to_utc))
    rows = query.group_by(LaborLogEntry.person_id).all()
    names = resolve_person_names(db, [r.person_id for r in rows])
    result = [
        {
            "person_id": r.person_id,
            "person_name": names.get(r.person_id, "Unknown"),
            "total_minutes": int(r.total_minutes or 0),
            "work_order_count": int(r.work_order_count or 0),
        }
        for r in rows
    ]
    result.sort(key=lambda r: r["total_minutes"], reverse=True)
    return result


def _merged_minutes(intervals: List[Tuple[datetime, datetime]]) -> float:
    total = 0.0
    current_start = current_end = None
    for start, end in sorted(intervals):
        if current_end is None or start > current_end:
            if current_end is not None:
                total += minutes_between(current_start, current_end)
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_end is not None:
        total += minutes_between(current_start, current_end)
    return total


def asset_kpis(db: Session, asset_id: uuid.UUID, days: int = 90, now: Optional[datetime] = None) -> dict:
    """
    Reliability figures for one asset over the last `days` days.

    failures: reactive work orders created in the period
    mttr_minutes: mean duration of the finished ones
    mtbf_hours: mean gap between consecutive failure creation times
    downtime_hours: time covered by work orders in progress or finished (overlaps merged)
    """
    if days <= 0:
        raise ValidationError("days must be positive")
    now = ensure_utc(now) if now else utcnow()
    since = now - timedelta(days=days)

    work_orders = (
        db.query(WorkItem)
        .filter(WorkItem.kind == WorkItemKind.work_order.value, WorkItem.asset_id == asset_id)
        .all()
    )
    failures = sorted(
        (
            wo for wo in work_orders
            if wo.classification == "reactive" and since <= ensure_utc(wo.created_at) <= now
        ),
        key=lambda wo: ensure_utc(wo.created_at),
    )
    repair_minutes = [
        wo.duration_minutes for wo in failures
        if wo.status == WorkItemStatus.done.value and wo.duration_minutes is not None
    ]
    gaps = [
        minutes_between(a.created_at, b.created_at) / 60
        for a, b in zip(failures, failures[1:])
    ]

    intervals = []
    for wo in work_orders:
        if wo.start_at is None or wo.status == WorkItemStatus.cancelled.value:
            continue
        start = max(ensure_utc(wo.start_at), since)
        end = min(ensure_utc(wo.stop_at) if wo.stop_at else now, now)
        if end > start:
            intervals.append((start, end))

    return {
        "asset_id": asset_id,
        "days": days,
        "failures": len(failures),
        "mttr_minutes": round(sum(repair_minutes) / len(repair_minutes), 1) if repair_minutes else None,
        "mtbf_hours": round(sum(gaps) / len(gaps), 1) if gaps else None,
        "downtime_hours": round(_merged_minutes(intervals) / 60, 2),
    }
