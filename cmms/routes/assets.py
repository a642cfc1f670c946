import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Asset
from ..schemas.catalog import AssetCreate, AssetResponse, AssetUpdate
from ..schemas.reports import AssetKpisResponse
from ..services.reporting import asset_kpis
from ..services.time_rules import utcnow


router = APIRouter(prefix="/assets", tags=["assets"])


def _get_asset(db: Session, asset_id: uuid.UUID) -> Asset:
    asset = db.query(Asset).filter(Asset.id == asset_id).first()
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


@router.get("", response_model=List[AssetResponse])
def list_assets(
    q: Optional[str] = None,
    status: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    query = db.query(Asset)
    if not include_inactive:
        query = query.filter(Asset.is_active.is_(True))
    if status:
        query = query.filter(Asset.status == status)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(Asset.name.ilike(pattern), Asset.code.ilike(pattern)))
    return query.order_by(Asset.name.asc()).all()


@router.post("", response_model=AssetResponse)
def create_asset(payload: AssetCreate, db: Session = Depends(get_db)):
    # status is derived from work orders and always starts operational
    asset = Asset(id=uuid.uuid4(), **payload.model_dump())
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


@router.get("/{asset_id}", response_model=AssetResponse)
def get_asset(asset_id: uuid.UUID, db: Session = Depends(get_db)):
    return _get_asset(db, asset_id)


@router.put("/{asset_id}", response_model=AssetResponse)
def update_asset(asset_id: uuid.UUID, payload: AssetUpdate, db: Session = Depends(get_db)):
    asset = _get_asset(db, asset_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(asset, key, value)
    asset.updated_at = utcnow()
    db.commit()
    db.refresh(asset)
    return asset


@router.get("/{asset_id}/kpis", response_model=AssetKpisResponse)
def get_asset_kpis(
    asset_id: uuid.UUID,
    days: int = Query(default=90, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    _get_asset(db, asset_id)
    return asset_kpis(db, asset_id, days=days)
