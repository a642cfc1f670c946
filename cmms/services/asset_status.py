"""
Asset status derived from work orders.
An asset is in maintenance while any of its work orders is in progress.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import Asset, WorkItem
from ..schemas.work_items import AssetStatus, WorkItemKind, WorkItemStatus
from .time_rules import utcnow

log = structlog.get_logger(__name__)


def has_other_work_in_progress(db: Session, asset_id: uuid.UUID, exclude_item_id: Optional[uuid.UUID]) -> bool:
    query = db.query(WorkItem.id).filter(
        WorkItem.kind == WorkItemKind.work_order.value,
        WorkItem.asset_id == asset_id,
        WorkItem.status == WorkItemStatus.in_progress.value,
    )
    if exclude_item_id is not None:
        query = query.filter(WorkItem.id != exclude_item_id)
    return db.query(query.exists()).scalar()


def refresh_asset_status(
    db: Session,
    asset_id: Optional[uuid.UUID],
    item: Optional[WorkItem] = None,
) -> Optional[str]:
    """
    Recompute and store an asset's status.

    Args:
        db: Database session (same transaction as the work order change)
        asset_id: Asset to recompute
        item: Work order that just changed; its current status is taken from memory
              and it is excluded from the database lookup

    Returns:
        The new status when it changed, otherwise None
    """
    if asset_id is None:
        return None
    asset = db.query(Asset).filter(Asset.id == asset_id).first()
    if not asset:
        return None

    item_counts = item is not None and item.asset_id == asset_id
    if item_counts and item.status == WorkItemStatus.in_progress.value:
        new_status = AssetStatus.in_maintenance.value
    elif has_other_work_in_progress(db, asset_id, item.id if item is not None else None):
        new_status = AssetStatus.in_maintenance.value
    else:
        new_status = AssetStatus.operational.value

    if asset.status == new_status:
        return None

    log.info("asset.status_changed", asset_id=str(asset_id), old=asset.status, new=new_status)
    asset.status = new_status
    asset.updated_at = utcnow()
    return new_status


def propagate_work_order_change(
    db: Session,
    item: WorkItem,
    previous_asset_id: Optional[uuid.UUID] = None,
) -> None:
    """
    Refresh the asset(s) touched by a work order change.
    Extra jobs have no asset and are ignored.
    """
    if item.kind != WorkItemKind.work_order.value:
        return
    refresh_asset_status(db, item.asset_id, item)
    if previous_asset_id is not None and previous_asset_id != item.asset_id:
        refresh_asset_status(db, previous_asset_id, item)
