import uuid
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..models.models import Asset, Person

UNKNOWN_NAME = "Unknown"


def person_display_name(person: Optional[Person]) -> Optional[str]:
    if not person:
        return None
    if person.display_name and person.display_name.strip():
        return person.display_name.strip()
    if person.full_name and person.full_name.strip():
        return person.full_name.strip()
    return None


def resolve_person_names(db: Session, person_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
    """Display names for many people; missing or blank names map to "Unknown"."""
    ids = {pid for pid in person_ids if pid is not None}
    names = {pid: UNKNOWN_NAME for pid in ids}
    if not ids:
        return names
    for person in db.query(Person).filter(Person.id.in_(ids)).all():
        names[person.id] = person_display_name(person) or UNKNOWN_NAME
    return names


def resolve_asset_names(db: Session, asset_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
    ids = {aid for aid in asset_ids if aid is not None}
    names = {aid: UNKNOWN_NAME for aid in ids}
    if not ids:
        return names
    for asset in db.query(Asset).filter(Asset.id.in_(ids)).all():
        names[asset.id] = (asset.name or "").strip() or UNKNOWN_NAME
    return names
