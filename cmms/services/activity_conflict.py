"""
Activity conflict detection.
HARD STOP rule: a person may run only one extra job at a time.
"""
import uuid
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.models import Person, WorkItem
from ..schemas.work_items import WorkItemKind, WorkItemStatus
from .time_rules import utcnow


def lock_person_activity(db: Session, person_id: uuid.UUID) -> None:
    """
    Take a write lock on the person's row for the rest of the transaction.

    A plain UPDATE is used instead of SELECT ... FOR UPDATE so that SQLite (which ignores
    FOR UPDATE) also serializes: the second writer waits until the first commits and then
    reads the committed state.
    """
    db.execute(
        update(Person)
        .where(Person.id == person_id)
        .values(activity_locked_at=utcnow())
    )


def get_running_activities(
    db: Session,
    person_id: uuid.UUID,
    exclude_item_id: Optional[uuid.UUID] = None,
) -> List[WorkItem]:
    """
    In-progress extra jobs assigned to a person.

    Args:
        db: Database session
        person_id: Assignee
        exclude_item_id: Item to leave out (the one being started)

    Returns:
        List of WorkItem rows, oldest start first
    """
    query = db.query(WorkItem).filter(
        WorkItem.kind == WorkItemKind.extra_job.value,
        WorkItem.assigned_person_id == person_id,
        WorkItem.status == WorkItemStatus.in_progress.value,
    )
    if exclude_item_id:
        query = query.filter(WorkItem.id != exclude_item_id)
    return query.order_by(WorkItem.start_at.asc()).all()


def find_blocking_activity(
    db: Session,
    person_id: Optional[uuid.UUID],
    exclude_item_id: Optional[uuid.UUID] = None,
) -> Optional[WorkItem]:
    if person_id is None:
        return None
    running = get_running_activities(db, person_id, exclude_item_id)
    return running[0] if running else None
