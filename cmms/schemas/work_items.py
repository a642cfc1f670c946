import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field


# Enums
class WorkItemKind(str, Enum):
    work_order = "work_order"
    extra_job = "extra_job"


class WorkItemStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    done = "done"
    cancelled = "cancelled"


class WorkOrderClassification(str, Enum):
    reactive = "reactive"
    proactive = "proactive"


class WorkOrderType(str, Enum):
    ad_hoc = "ad_hoc"
    corrective = "corrective"
    preventive = "preventive"
    extra = "extra"


class EventKind(str, Enum):
    created = "created"
    updated = "updated"
    status_changed = "status_changed"
    assigned_changed = "assigned_changed"
    started = "started"
    stopped = "stopped"
    cancelled = "cancelled"
    reopened = "reopened"
    comment = "comment"


class AssetStatus(str, Enum):
    operational = "operational"
    in_maintenance = "in_maintenance"


# Work Order Schemas
class WorkOrderCreate(BaseModel):
    title: str
    description: Optional[str] = None
    type: WorkOrderType = WorkOrderType.ad_hoc
    classification: Optional[WorkOrderClassification] = None
    asset_id: Optional[uuid.UUID] = None
    assigned_person_id: Optional[uuid.UUID] = None
    defect: Optional[str] = None
    cause: Optional[str] = None
    solution: Optional[str] = None


class WorkOrderUpdate(BaseModel):
    """Partial edit; only the fields present in the payload are applied."""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[WorkOrderType] = None
    classification: Optional[WorkOrderClassification] = None
    status: Optional[WorkItemStatus] = None
    asset_id: Optional[uuid.UUID] = None
    assigned_person_id: Optional[uuid.UUID] = None
    start_at: Optional[datetime] = None
    stop_at: Optional[datetime] = None
    defect: Optional[str] = None
    cause: Optional[str] = None
    solution: Optional[str] = None


# Extra Job Schemas
class ExtraJobCreate(BaseModel):
    title: str
    description: Optional[str] = None
    assigned_person_id: Optional[uuid.UUID] = None


class ExtraJobUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[WorkItemStatus] = None
    assigned_person_id: Optional[uuid.UUID] = None
    start_at: Optional[datetime] = None
    stop_at: Optional[datetime] = None


class WorkItemResponse(BaseModel):
    id: uuid.UUID
    kind: WorkItemKind
    title: str
    description: Optional[str] = None
    status: WorkItemStatus
    classification: Optional[WorkOrderClassification] = None
    type: Optional[WorkOrderType] = None
    asset_id: Optional[uuid.UUID] = None
    assigned_person_id: Optional[uuid.UUID] = None
    start_at: Optional[datetime] = None
    stop_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    defect: Optional[str] = None
    cause: Optional[str] = None
    solution: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkItemPage(BaseModel):
    total: int
    take: int
    skip: int
    items: List[WorkItemResponse]


class CommentCreate(BaseModel):
    message: str = Field(min_length=1)


class EventResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    seq: int
    created_at_utc: datetime
    actor_id: Optional[str] = None
    kind: EventKind
    field: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    message: Optional[str] = None
    correlation_id: Optional[uuid.UUID] = None
    from_status: Optional[WorkItemStatus] = None
    to_status: Optional[WorkItemStatus] = None
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True


# Labor Schemas
class LaborLogCreate(BaseModel):
    person_id: uuid.UUID
    minutes: int
    description: Optional[str] = None


class LaborLogResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    person_id: uuid.UUID
    person_name: Optional[str] = None
    minutes: int
    description: Optional[str] = None
    created_at: datetime
