import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.work_items import LaborLogCreate, LaborLogResponse
from ..services import labor as svc


router = APIRouter(prefix="/work-orders/{work_order_id}/labor", tags=["labor"])


@router.get("", response_model=List[LaborLogResponse])
def list_labor(work_order_id: uuid.UUID, db: Session = Depends(get_db)):
    return [svc.labor_to_dict(entry) for entry in svc.list_labor(db, work_order_id)]


@router.post("", response_model=LaborLogResponse)
def create_labor(work_order_id: uuid.UUID, payload: LaborLogCreate, db: Session = Depends(get_db)):
    entry = svc.add_labor(db, work_order_id, payload.person_id, payload.minutes, payload.description)
    return svc.labor_to_dict(entry)


@router.delete("/{entry_id}")
def delete_labor(work_order_id: uuid.UUID, entry_id: uuid.UUID, db: Session = Depends(get_db)):
    svc.delete_labor(db, work_order_id, entry_id)
    return {"status": "ok"}
