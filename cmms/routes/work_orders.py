import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_actor_id
from ..db import get_db
from ..schemas.work_items import (
    CommentCreate,
    EventResponse,
    WorkItemKind,
    WorkItemPage,
    WorkItemResponse,
    WorkItemStatus,
    WorkOrderCreate,
    WorkOrderType,
    WorkOrderUpdate,
)
from ..services import work_items as svc
from ..services.events import get_events


router = APIRouter(prefix="/work-orders", tags=["work-orders"])

KIND = WorkItemKind.work_order.value


@router.get("", response_model=WorkItemPage)
def list_work_orders(
    q: Optional[str] = None,
    status: Optional[WorkItemStatus] = None,
    type: Optional[WorkOrderType] = None,
    asset_id: Optional[uuid.UUID] = None,
    person_id: Optional[uuid.UUID] = None,
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = None,
    take: int = 50,
    skip: int = 0,
    db: Session = Depends(get_db),
):
    total, items = svc.list_work_items(
        db,
        KIND,
        q=q,
        status=status.value if status else None,
        type=type.value if type else None,
        asset_id=asset_id,
        person_id=person_id,
        from_utc=from_,
        to_utc=to,
        take=take,
        skip=skip,
    )
    return {"total": total, "take": len(items), "skip": max(skip, 0), "items": items}


@router.post("", response_model=WorkItemResponse)
def create_work_order(
    payload: WorkOrderCreate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.create_work_item(db, KIND, actor_id=actor_id, **payload.model_dump())


@router.post("/repair-statuses")
def repair_work_order_statuses(
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    """Align status and duration with start/stop timestamps."""
    return {"changed": svc.repair_statuses(db, actor_id=actor_id)}


@router.get("/{work_order_id}", response_model=WorkItemResponse)
def get_work_order(work_order_id: uuid.UUID, db: Session = Depends(get_db)):
    return svc.get_work_item(db, work_order_id, KIND)


@router.put("/{work_order_id}", response_model=WorkItemResponse)
def update_work_order(
    work_order_id: uuid.UUID,
    payload: WorkOrderUpdate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.update_work_item(
        db, work_order_id, payload.model_dump(exclude_unset=True), actor_id=actor_id, kind=KIND
    )


@router.post("/{work_order_id}/start", response_model=WorkItemResponse)
def start_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.start_work_item(db, work_order_id, actor_id=actor_id, kind=KIND)


@router.post("/{work_order_id}/stop", response_model=WorkItemResponse)
def stop_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.stop_work_item(db, work_order_id, actor_id=actor_id, kind=KIND)


@router.post("/{work_order_id}/cancel", response_model=WorkItemResponse)
def cancel_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.cancel_work_item(db, work_order_id, actor_id=actor_id, kind=KIND)


@router.post("/{work_order_id}/reopen", response_model=WorkItemResponse)
def reopen_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.reopen_work_item(db, work_order_id, actor_id=actor_id, kind=KIND)


@router.get("/{work_order_id}/events", response_model=List[EventResponse])
def list_work_order_events(
    work_order_id: uuid.UUID,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    svc.get_work_item(db, work_order_id, KIND)
    return get_events(db, work_order_id, limit=limit, offset=offset)


@router.post("/{work_order_id}/comments", response_model=EventResponse)
def comment_work_order(
    work_order_id: uuid.UUID,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.add_comment(db, work_order_id, payload.message, actor_id=actor_id, kind=KIND)
