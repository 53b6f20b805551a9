from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import default_range
from funnel_tracker.db.session import get_db
from funnel_tracker.schemas.analytics import UtmReport, UtmStatistics
from funnel_tracker.services import utm

router = APIRouter()


@router.get("/report", response_model=UtmReport)
def get_utm_report(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    funnel_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Per-day UTM tuples with unique sessions and event counts"""
    date_from, date_to = default_range(date_from, date_to, settings.ANALYTICS_DEFAULT_PERIOD_DAYS)
    if date_from > date_to:
        raise ValidationError("date_from must not be after date_to.", code="invalid_date_range")
    return utm.get_utm_report(db, date_from, date_to, funnel_id=funnel_id, limit=limit)


@router.get("/statistics", response_model=UtmStatistics)
def get_utm_statistics(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    """Top sources, mediums and campaigns over the last `days` days"""
    return utm.get_utm_statistics(db, days=days)


@router.get("/values/{param}", response_model=List[str])
def get_available_utm_values(
    param: str,
    db: Session = Depends(get_db),
):
    return utm.get_available_utm_values(db, param)
