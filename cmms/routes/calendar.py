from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import CompanyBlackoutDay, NationalHoliday
from ..schemas.catalog import ClosedDayIn, ClosedDayResponse, WeeklySchedule, WorkingDayResponse
from ..services import calendar as svc
from ..services.time_rules import utcnow


router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/closed-days", response_model=List[ClosedDayResponse])
def list_closed_days(year: Optional[int] = None, db: Session = Depends(get_db)):
    """Built-in holidays, national holidays and company blackout days of a year."""
    return svc.list_closed_days(db, year or utcnow().year)


@router.put("/holidays", response_model=ClosedDayResponse)
def put_holiday(payload: ClosedDayIn, db: Session = Depends(get_db)):
    row = svc.upsert_closed_day(db, NationalHoliday, payload.day, payload.name)
    return {"day": row.day, "name": row.name, "source": "national"}


@router.delete("/holidays/{day}")
def delete_holiday(day: date, db: Session = Depends(get_db)):
    svc.deactivate_closed_day(db, NationalHoliday, day)
    return {"status": "ok"}


@router.put("/blackouts", response_model=ClosedDayResponse)
def put_blackout(payload: ClosedDayIn, db: Session = Depends(get_db)):
    row = svc.upsert_closed_day(db, CompanyBlackoutDay, payload.day, payload.name)
    return {"day": row.day, "name": row.name, "source": "blackout"}


@router.delete("/blackouts/{day}")
def delete_blackout(day: date, db: Session = Depends(get_db)):
    svc.deactivate_closed_day(db, CompanyBlackoutDay, day)
    return {"status": "ok"}


@router.get("/working-days/{day}", response_model=WorkingDayResponse)
def get_working_day(day: date, db: Session = Depends(get_db)):
    calendar = svc.DbWorkingCalendar(db)
    return {
        "day": day,
        "is_working_day": calendar.is_working_day(day),
        "next_working_day": calendar.get_next_working_day(day),
    }


@router.get("/unit-work-schedule", response_model=WeeklySchedule)
def get_unit_work_schedule(db: Session = Depends(get_db)):
    return WeeklySchedule.model_validate(svc.get_unit_schedule(db))


@router.put("/unit-work-schedule", response_model=WeeklySchedule)
def put_unit_work_schedule(payload: WeeklySchedule, db: Session = Depends(get_db)):
    return WeeklySchedule.model_validate(svc.save_unit_schedule(db, payload.model_dump()))
