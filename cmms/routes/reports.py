import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.reports import LaborReportItem, ReportGroupBy, ReportRowResponse
from ..schemas.work_items import WorkItemKind
from ..services.reporting import ReportFilters, build_report, labor_report


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/worked-time", response_model=List[ReportRowResponse])
def worked_time_report(
    group_by: ReportGroupBy = ReportGroupBy.person,
    from_: datetime = Query(alias="from"),
    to: datetime = Query(),
    person_id: Optional[List[uuid.UUID]] = Query(default=None),
    asset_id: Optional[List[uuid.UUID]] = Query(default=None),
    kind: Optional[List[WorkItemKind]] = Query(default=None),
    by_day: bool = False,
    include_segments: bool = True,
    db: Session = Depends(get_db),
):
    """
    Minutes per category (pm, proactive, reactive, extra, other) per person or asset,
    with worked/reactive percentage of scheduled capacity and person overtime.
    """
    filters = ReportFilters(
        person_ids=person_id,
        asset_ids=asset_id,
        kinds=[k.value for k in kind] if kind else None,
    )
    rows = build_report(db, group_by.value, from_, to, filters=filters, by_day=by_day)
    if not include_segments:
        for row in rows:
            row.segments = []
    # Segment.minutes is a property, so rows are validated from attributes rather than asdict()
    return [ReportRowResponse.model_validate(row) for row in rows]


@router.get("/labor", response_model=List[LaborReportItem])
def labor_minutes_report(
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return labor_report(db, from_, to)
