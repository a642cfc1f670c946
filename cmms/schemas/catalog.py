import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, field_validator


# Assets
class AssetCreate(BaseModel):
    name: str
    code: Optional[str] = None
    location_name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name required")
        return v


class AssetUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    location_name: Optional[str] = None
    is_active: Optional[bool] = None


class AssetResponse(BaseModel):
    id: uuid.UUID
    name: str
    code: Optional[str] = None
    location_name: Optional[str] = None
    status: str
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# People
class PersonCreate(BaseModel):
    display_name: str
    full_name: Optional[str] = None
    job_title: Optional[str] = None


class PersonResponse(BaseModel):
    id: uuid.UUID
    display_name: str
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class WeeklySchedule(BaseModel):
    mon_fri_start: time
    mon_fri_end: time
    sat_start: Optional[time] = None
    sat_end: Optional[time] = None
    sun_start: Optional[time] = None
    sun_end: Optional[time] = None

    class Config:
        from_attributes = True


class PersonScheduleIn(WeeklySchedule):
    timezone: Optional[str] = None


class PersonScheduleResponse(WeeklySchedule):
    person_id: uuid.UUID
    timezone: str


# Calendar
class ClosedDayIn(BaseModel):
    day: date
    name: Optional[str] = None


class ClosedDayResponse(BaseModel):
    day: date
    name: Optional[str] = None
    source: str


class WorkingDayResponse(BaseModel):
    day: date
    is_working_day: bool
    next_working_day: date
