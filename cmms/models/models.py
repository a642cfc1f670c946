import uuid
from datetime import datetime, date, time
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    Index,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from ..services.time_rules import utcnow


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# =====================
# Assets / People
# =====================

class Asset(Base):
    """Maintainable equipment; status is derived from its work orders"""
    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50), default="operational", index=True)  # operational|in_maintenance
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Person(Base):
    __tablename__ = "people"

    id: Mapped[uuid.UUID] = uuid_pk()
    display_name: Mapped[str] = mapped_column(String(255), default="")
    full_name: Mapped[str] = mapped_column(String(255), default="")
    job_title: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Touched by Start of an extra job so concurrent starts for one person serialize on this row
    activity_locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_schedule = relationship("PersonWorkSchedule", back_populates="person", uselist=False, cascade="all, delete-orphan")


class PersonWorkSchedule(Base):
    """Weekly shift hours for one person (local time in `timezone`)"""
    __tablename__ = "person_work_schedules"

    person_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), primary_key=True)
    mon_fri_start: Mapped[time] = mapped_column(Time(timezone=False), nullable=False, default=time(8, 0))
    mon_fri_end: Mapped[time] = mapped_column(Time(timezone=False), nullable=False, default=time(16, 30))
    sat_start: Mapped[Optional[time]] = mapped_column(Time(timezone=False))  # null => not working
    sat_end: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    sun_start: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    sun_end: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    timezone: Mapped[str] = mapped_column(String(64), default="Europe/Bucharest")

    person = relationship("Person", back_populates="work_schedule")


# =====================
# Calendar (company closed days, unit hours)
# =====================

class UnitWorkSchedule(Base):
    __tablename__ = "unit_work_schedule"

    id: Mapped[uuid.UUID] = uuid_pk()
    mon_fri_start: Mapped[time] = mapped_column(Time(timezone=False), nullable=False, default=time(8, 0))
    mon_fri_end: Mapped[time] = mapped_column(Time(timezone=False), nullable=False, default=time(17, 0))
    sat_start: Mapped[Optional[time]] = mapped_column(Time(timezone=False))  # null => unit closed
    sat_end: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    sun_start: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    sun_end: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class NationalHoliday(Base):
    __tablename__ = "national_holidays"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class CompanyBlackoutDay(Base):
    __tablename__ = "company_blackout_days"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# =====================
# Work tracking
# =====================

class WorkItem(Base):
    """Work orders and extra jobs; both share one lifecycle"""
    __tablename__ = "work_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # work_order|extra_job
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default="open", index=True)  # open|in_progress|done|cancelled
    classification: Mapped[Optional[str]] = mapped_column(String(20))  # reactive|proactive (work orders)
    type: Mapped[Optional[str]] = mapped_column(String(20))  # ad_hoc|corrective|preventive|extra (work orders)
    asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("assets.id", ondelete="SET NULL"), index=True)
    assigned_person_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("people.id", ondelete="SET NULL"), index=True)
    start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    stop_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    # Intervention fields
    defect: Mapped[Optional[str]] = mapped_column(Text)
    cause: Mapped[Optional[str]] = mapped_column(Text)
    solution: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))  # actor id

    asset = relationship("Asset")
    assigned_person = relationship("Person")

    __table_args__ = (
        Index('idx_work_item_kind_status', 'kind', 'status'),
        Index('idx_work_item_person_status', 'assigned_person_id', 'status'),
    )


class WorkItemEvent(Base):
    """Append-only audit trail for work items"""
    __tablename__ = "work_item_events"

    id: Mapped[uuid.UUID] = uuid_pk()
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_items.id"), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)  # insertion order within owner
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(255))
    kind: Mapped[str] = mapped_column(String(50), nullable=False)  # created|status_changed|started|stopped|cancelled|reopened|updated|assigned_changed|comment
    field: Mapped[Optional[str]] = mapped_column(String(100))  # e.g. status, start_at, assigned_person_id, title
    old_value: Mapped[Optional[str]] = mapped_column(Text)
    new_value: Mapped[Optional[str]] = mapped_column(Text)
    message: Mapped[Optional[str]] = mapped_column(Text)
    correlation_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(50))
    to_status: Mapped[Optional[str]] = mapped_column(String(50))
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_work_item_event_owner_time', 'owner_id', 'created_at_utc', 'seq'),
    )


class LaborLogEntry(Base):
    """Minutes a person logged against a work order"""
    __tablename__ = "work_item_labor"

    id: Mapped[uuid.UUID] = uuid_pk()
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    person = relationship("Person")

    __table_args__ = (
        Index('idx_labor_owner_person', 'owner_id', 'person_id'),
    )


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(WorkItemEvent, "before_update")
def _reject_event_update(mapper, connection, target):
    raise AppendOnlyViolation("work item events are append-only")


@event.listens_for(WorkItemEvent, "before_delete")
def _reject_event_delete(mapper, connection, target):
    raise AppendOnlyViolation("work item events are append-only")
