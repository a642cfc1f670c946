"""
Dashboard figures over work orders.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Asset, WorkItem
from ..schemas.work_items import AssetStatus, WorkItemKind, WorkItemStatus
from .people import person_display_name
from .time_rules import ensure_utc, utcnow

PERIODS = ("week", "month", "quarter")


def resolve_period(period: Optional[str], now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    UTC window from the start of the current week (Monday), month or quarter until now.
    Unknown values mean week.
    """
    now = ensure_utc(now) if now else utcnow()
    period = (period or "").strip().lower()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "month":
        return midnight.replace(day=1), now
    if period == "quarter":
        first_month = ((now.month - 1) // 3) * 3 + 1
        return midnight.replace(month=first_month, day=1), now
    return midnight - timedelta(days=now.weekday()), now


def _work_orders(db: Session):
    return db.query(WorkItem).filter(WorkItem.kind == WorkItemKind.work_order.value)


def _in_window(query, from_utc: Optional[datetime], to_utc: Optional[datetime]):
    if to_utc is not None:
        query = query.filter(or_(WorkItem.start_at.is_(None), WorkItem.start_at <= ensure_utc(to_utc)))
    if from_utc is not None:
        query = query.filter(or_(WorkItem.stop_at.is_(None), WorkItem.stop_at >= ensure_utc(from_utc)))
    return query


def get_kpis(
    db: Session,
    from_utc: Optional[datetime] = None,
    to_utc: Optional[datetime] = None,
    person_id: Optional[uuid.UUID] = None,
) -> dict:
    query = _in_window(_work_orders(db), from_utc, to_utc)
    if person_id:
        query = query.filter(WorkItem.assigned_person_id == person_id)

    assets_in_maintenance = (
        db.query(func.count(Asset.id))
        .filter(Asset.status == AssetStatus.in_maintenance.value)
        .scalar()
    )
    return {
        "wo_total": query.count(),
        "wo_closed": query.filter(WorkItem.status == WorkItemStatus.done.value).count(),
        "wo_in_progress": query.filter(WorkItem.status == WorkItemStatus.in_progress.value).count(),
        "assets_in_maintenance": assets_in_maintenance or 0,
    }


def get_person_activity(
    db: Session,
    person_id: uuid.UUID,
    period: Optional[str] = "week",
    take: int = 50,
    skip: int = 0,
    now: Optional[datetime] = None,
) -> dict:
    if take <= 0:
        take = 50
    take = min(take, settings.list_take_max)
    skip = max(skip, 0)
    from_utc, to_utc = resolve_period(period, now)

    query = _in_window(_work_orders(db), from_utc, to_utc).filter(WorkItem.assigned_person_id == person_id)
    counts = dict(
        query.with_entities(WorkItem.status, func.count(WorkItem.id)).group_by(WorkItem.status).all()
    )
    total_minutes = query.with_entities(func.coalesce(func.sum(WorkItem.duration_minutes), 0)).scalar()
    items = (
        query.order_by(WorkItem.start_at.desc().nullslast(), WorkItem.id.desc())
        .offset(skip)
        .limit(take)
        .all()
    )
    return {
        "person_id": person_id,
        "from_utc": from_utc,
        "to_utc": to_utc,
        "wo_total": sum(counts.values()),
        "wo_closed": counts.get(WorkItemStatus.done.value, 0),
        "wo_in_progress": counts.get(WorkItemStatus.in_progress.value, 0),
        "wo_open": counts.get(WorkItemStatus.open.value, 0),
        "wo_cancelled": counts.get(WorkItemStatus.cancelled.value, 0),
        "total_duration_minutes": int(total_minutes or 0),
        "items": [
            {
                "id": wo.id,
                "title": wo.title,
                "status": wo.status,
                "asset_id": wo.asset_id,
                "asset_name": wo.asset.name if wo.asset else None,
                "start_at": ensure_utc(wo.start_at),
                "stop_at": ensure_utc(wo.stop_at),
                "duration_minutes": wo.duration_minutes,
            }
            for wo in items
        ],
    }


def get_assets_in_maintenance(db: Session) -> list:
    """One row per asset with an in-progress work order (the most recently started one), by asset name."""
    rows = (
        _work_orders(db)
        .filter(WorkItem.status == WorkItemStatus.in_progress.value, WorkItem.asset_id.isnot(None))
        .order_by(WorkItem.start_at.desc().nullslast())
        .all()
    )
    seen = {}
    for wo in rows:
        if wo.asset_id in seen:
            continue
        seen[wo.asset_id] = {
            "asset_id": wo.asset_id,
            "asset_name": wo.asset.name if wo.asset else "Unknown",
            "location_name": wo.asset.location_name if wo.asset else None,
            "work_order_id": wo.id,
            "work_order_title": wo.title,
            "work_order_status": wo.status,
            "assigned_person_id": wo.assigned_person_id,
            "assigned_person_name": person_display_name(wo.assigned_person),
            "start_at": ensure_utc(wo.start_at),
        }
    return sorted(seen.values(), key=lambda r: r["asset_name"].lower())
