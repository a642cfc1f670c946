import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.reports import AssetInMaintenanceRow, KpisResponse, PersonActivityResponse
from ..services import dashboard as svc


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/kpis", response_model=KpisResponse)
def get_kpis(
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = None,
    person_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
):
    return svc.get_kpis(db, from_, to, person_id)


@router.get("/people/{person_id}/activity", response_model=PersonActivityResponse)
def get_person_activity(
    person_id: uuid.UUID,
    period: str = Query(default="week", pattern="^(week|month|quarter)$"),
    take: int = 50,
    skip: int = 0,
    db: Session = Depends(get_db),
):
    return svc.get_person_activity(db, person_id, period=period, take=take, skip=skip)


@router.get("/assets/in-maintenance", response_model=List[AssetInMaintenanceRow])
def get_assets_in_maintenance(db: Session = Depends(get_db)):
    return svc.get_assets_in_maintenance(db)
