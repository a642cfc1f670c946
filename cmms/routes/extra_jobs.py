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
    ExtraJobCreate,
    ExtraJobUpdate,
    WorkItemKind,
    WorkItemPage,
    WorkItemResponse,
    WorkItemStatus,
)
from ..services import work_items as svc
from ..services.events import get_events


router = APIRouter(prefix="/extra-jobs", tags=["extra-jobs"])

KIND = WorkItemKind.extra_job.value


@router.get("", response_model=WorkItemPage)
def list_extra_jobs(
    q: Optional[str] = None,
    status: Optional[WorkItemStatus] = None,
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
        person_id=person_id,
        from_utc=from_,
        to_utc=to,
        take=take,
        skip=skip,
    )
    return {"total": total, "take": len(items), "skip": max(skip, 0), "items": items}


@router.post("", response_model=WorkItemResponse)
def create_extra_job(
    payload: ExtraJobCreate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.create_work_item(db, KIND, actor_id=actor_id, **payload.model_dump())


@router.get("/{job_id}", response_model=WorkItemResponse)
def get_extra_job(job_id: uuid.UUID, db: Session = Depends(get_db)):
    return svc.get_work_item(db, job_id, KIND)


@router.put("/{job_id}", response_model=WorkItemResponse)
def update_extra_job(
    job_id: uuid.UUID,
    payload: ExtraJobUpdate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.update_work_item(db, job_id, payload.model_dump(exclude_unset=True), actor_id=actor_id, kind=KIND)


@router.post("/{job_id}/start", response_model=WorkItemResponse)
def start_extra_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    """409 with the blocking job when the assignee already runs another extra job."""
    return svc.start_work_item(db, job_id, actor_id=actor_id, kind=KIND)


@router.post("/{job_id}/stop", response_model=WorkItemResponse)
def stop_extra_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.stop_work_item(db, job_id, actor_id=actor_id, kind=KIND)


@router.post("/{job_id}/cancel", response_model=WorkItemResponse)
def cancel_extra_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.cancel_work_item(db, job_id, actor_id=actor_id, kind=KIND)


@router.post("/{job_id}/reopen", response_model=WorkItemResponse)
def reopen_extra_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.reopen_work_item(db, job_id, actor_id=actor_id, kind=KIND)


@router.get("/{job_id}/events", response_model=List[EventResponse])
def list_extra_job_events(
    job_id: uuid.UUID,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    svc.get_work_item(db, job_id, KIND)
    return get_events(db, job_id, limit=limit, offset=offset)


@router.post("/{job_id}/comments", response_model=EventResponse)
def comment_extra_job(
    job_id: uuid.UUID,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
):
    return svc.add_comment(db, job_id, payload.message, actor_id=actor_id, kind=KIND)
