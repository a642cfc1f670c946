"""
Labor logged against work orders.
"""
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import LaborLogEntry, Person
from ..schemas.work_items import WorkItemKind
from .errors import NotFound, ValidationError
from .people import UNKNOWN_NAME, person_display_name
from .time_rules import ensure_utc, utcnow
from .work_items import get_work_item

log = structlog.get_logger(__name__)


def labor_to_dict(entry: LaborLogEntry) -> dict:
    return {
        "id": entry.id,
        "owner_id": entry.owner_id,
        "person_id": entry.person_id,
        "person_name": person_display_name(entry.person) or UNKNOWN_NAME,
        "minutes": entry.minutes,
        "description": entry.description,
        "created_at": ensure_utc(entry.created_at),
    }


def list_labor(db: Session, work_order_id: uuid.UUID) -> List[LaborLogEntry]:
    get_work_item(db, work_order_id, WorkItemKind.work_order.value)
    return (
        db.query(LaborLogEntry)
        .filter(LaborLogEntry.owner_id == work_order_id)
        .order_by(LaborLogEntry.created_at.desc())
        .all()
    )


def add_labor(
    db: Session,
    work_order_id: uuid.UUID,
    person_id: uuid.UUID,
    minutes: int,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LaborLogEntry:
    """
    Log minutes for a person on a work order.

    The entry is timestamped when logged; reports place it at
    [created_at - minutes, created_at].
    """
    get_work_item(db, work_order_id, WorkItemKind.work_order.value)
    person = db.query(Person).filter(Person.id == person_id).first()
    if not person:
        raise ValidationError("Person not found.")
    if minutes is None or minutes <= 0:
        raise ValidationError("Minutes must be > 0.")

    entry = LaborLogEntry(
        id=uuid.uuid4(),
        owner_id=work_order_id,
        person_id=person_id,
        minutes=minutes,
        description=description.strip() if description and description.strip() else None,
        created_at=ensure_utc(now) if now else utcnow(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    log.info("labor.logged", work_order_id=str(work_order_id), person_id=str(person_id), minutes=minutes)
    return entry


def delete_labor(db: Session, work_order_id: uuid.UUID, entry_id: uuid.UUID) -> None:
    entry = (
        db.query(LaborLogEntry)
        .filter(LaborLogEntry.id == entry_id, LaborLogEntry.owner_id == work_order_id)
        .first()
    )
    if not entry:
        raise NotFound("Labor entry not found")
    db.delete(entry)
    db.commit()
    log.info("labor.deleted", work_order_id=str(work_order_id), entry_id=str(entry_id))
