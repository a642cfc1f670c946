import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Person
from ..schemas.catalog import PersonCreate, PersonResponse, PersonScheduleIn, PersonScheduleResponse
from ..services.calendar import get_person_schedule, save_person_schedule


router = APIRouter(prefix="/people", tags=["people"])


def _get_person(db: Session, person_id: uuid.UUID) -> Person:
    person = db.query(Person).filter(Person.id == person_id).first()
    if not person:
        raise HTTPException(status_code=404, detail="Person not found")
    return person


@router.get("", response_model=List[PersonResponse])
def list_people(q: Optional[str] = None, include_inactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(Person)
    if not include_inactive:
        query = query.filter(Person.is_active.is_(True))
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(Person.display_name.ilike(pattern), Person.full_name.ilike(pattern)))
    return query.order_by(Person.display_name.asc()).all()


@router.post("", response_model=PersonResponse)
def create_person(payload: PersonCreate, db: Session = Depends(get_db)):
    display_name = payload.display_name.strip()
    if not display_name:
        raise HTTPException(status_code=422, detail="display_name required")
    person = Person(
        id=uuid.uuid4(),
        display_name=display_name,
        full_name=(payload.full_name or display_name).strip(),
        job_title=payload.job_title,
    )
    db.add(person)
    db.commit()
    db.refresh(person)
    return person


@router.get("/{person_id}", response_model=PersonResponse)
def get_person(person_id: uuid.UUID, db: Session = Depends(get_db)):
    return _get_person(db, person_id)


@router.get("/{person_id}/schedule", response_model=PersonScheduleResponse)
def get_schedule(person_id: uuid.UUID, db: Session = Depends(get_db)):
    _get_person(db, person_id)
    return PersonScheduleResponse.model_validate(get_person_schedule(db, person_id))


@router.put("/{person_id}/schedule", response_model=PersonScheduleResponse)
def put_schedule(person_id: uuid.UUID, payload: PersonScheduleIn, db: Session = Depends(get_db)):
    _get_person(db, person_id)
    row = save_person_schedule(db, person_id, payload.model_dump())
    return PersonScheduleResponse.model_validate(row)
