import uuid
from datetime import date, datetime
from typing import Dict, List, Optional
from enum import Enum

from pydantic import BaseModel


class ReportGroupBy(str, Enum):
    person = "person"
    asset = "asset"


class SegmentResponse(BaseModel):
    category: str
    start_utc: datetime
    stop_utc: datetime
    minutes: float
    item_id: uuid.UUID
    person_id: Optional[uuid.UUID] = None
    asset_id: Optional[uuid.UUID] = None
    is_open: bool = False

    class Config:
        from_attributes = True


class ReportRowResponse(BaseModel):
    id: uuid.UUID
    name: str
    day: Optional[date] = None
    minutes_by_category: Dict[str, int]
    total_minutes: int
    scheduled_minutes: int
    worked_pct: Optional[float] = None
    reactive_pct: Optional[float] = None
    overtime_minutes: Optional[int] = None
    timezone: str
    calendar_fallback: bool = False
    segments: List[SegmentResponse] = []

    class Config:
        from_attributes = True


class LaborReportItem(BaseModel):
    person_id: uuid.UUID
    person_name: str
    total_minutes: int
    work_order_count: int


class AssetKpisResponse(BaseModel):
    asset_id: uuid.UUID
    days: int
    failures: int
    mttr_minutes: Optional[float] = None
    mtbf_hours: Optional[float] = None
    downtime_hours: float


# Dashboard
class KpisResponse(BaseModel):
    wo_total: int
    wo_closed: int
    wo_in_progress: int
    assets_in_maintenance: int


class ActivityRow(BaseModel):
    id: uuid.UUID
    title: str
    status: str
    asset_id: Optional[uuid.UUID] = None
    asset_name: Optional[str] = None
    start_at: Optional[datetime] = None
    stop_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None


class PersonActivityResponse(BaseModel):
    person_id: uuid.UUID
    from_utc: datetime
    to_utc: datetime
    wo_total: int
    wo_closed: int
    wo_in_progress: int
    wo_open: int
    wo_cancelled: int
    total_duration_minutes: int
    items: List[ActivityRow]


class AssetInMaintenanceRow(BaseModel):
    asset_id: uuid.UUID
    asset_name: str
    location_name: Optional[str] = None
    work_order_id: uuid.UUID
    work_order_title: str
    work_order_status: str
    assigned_person_id: Optional[uuid.UUID] = None
    assigned_person_name: Optional[str] = None
    start_at: Optional[datetime] = None
