"""
Funnel API
Provides CRUD for funnels and their steps, analytics, and exports.
Callers are trusted; access control is handled in front of this service.
"""
from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from funnel_tracker.db.session import get_db
from funnel_tracker.schemas.analytics import (
    CompletionTimes,
    FunnelAnalytics,
    UtmBreakdownRow,
    UtmFilters,
)
from funnel_tracker.schemas.funnel import (
    Funnel as FunnelSchema,
    FunnelCreate,
    FunnelPage,
    FunnelUpdate,
    FunnelWithSteps,
)
from funnel_tracker.services import analytics, export, funnel_manager

router = APIRouter()

EXPORT_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


# Funnel CRUD
@router.get("", response_model=FunnelPage)
def list_funnels(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=200),
    search: str = Query(""),
    orderby: str = Query("created_at"),
    order: str = Query("DESC"),
    funnel_status: str = Query("", alias="status"),
    include_steps: bool = Query(False),
    db: Session = Depends(get_db),
):
    """List funnels with pagination, search and ordering"""
    result = funnel_manager.list_funnels(
        db,
        page=page,
        per_page=per_page,
        search=search,
        order_by=orderby,
        order=order,
        status=funnel_status,
        include_steps=include_steps,
    )
    if include_steps:
        result["items"] = [FunnelWithSteps.model_validate(funnel) for funnel in result["items"]]
    else:
        # Don't lazy-load steps just to serialize the listing
        result["items"] = [
            FunnelWithSteps(**FunnelSchema.model_validate(funnel).model_dump())
            for funnel in result["items"]
        ]
    return FunnelPage(**result)


@router.post("", response_model=FunnelWithSteps, status_code=status.HTTP_201_CREATED)
def create_funnel(
    funnel_data: FunnelCreate,
    db: Session = Depends(get_db),
):
    """Create a new funnel with its steps"""
    return funnel_manager.create_funnel(
        db,
        name=funnel_data.name,
        description=funnel_data.description,
        steps=funnel_data.steps,
    )


@router.get("/{funnel_id}", response_model=FunnelWithSteps)
def get_funnel(
    funnel_id: int,
    db: Session = Depends(get_db),
):
    """Get funnel details with steps"""
    return funnel_manager.get_funnel(db, funnel_id, include_steps=True)


@router.patch("/{funnel_id}", response_model=FunnelWithSteps)
def update_funnel(
    funnel_id: int,
    funnel_update: FunnelUpdate,
    db: Session = Depends(get_db),
):
    """Update a funnel. Sending `steps` replaces all existing steps."""
    return funnel_manager.update_funnel(db, funnel_id, funnel_update)


@router.delete("/{funnel_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_funnel(
    funnel_id: int,
    db: Session = Depends(get_db),
):
    """Delete a funnel, its steps and its tracking events"""
    funnel_manager.delete_funnel(db, funnel_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Analytics
@router.get("/{funnel_id}/analytics", response_model=FunnelAnalytics)
def get_funnel_analytics(
    funnel_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Step performance, summary and UTM breakdown for a date range (default: last 30 days)"""
    return analytics.get_funnel_analytics(db, funnel_id, date_from, date_to)


@router.get("/{funnel_id}/analytics/utm", response_model=List[UtmBreakdownRow])
def get_filtered_utm_data(
    funnel_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    utm_source: str = Query(""),
    utm_medium: str = Query(""),
    utm_campaign: str = Query(""),
    db: Session = Depends(get_db),
):
    filters = UtmFilters(utm_source=utm_source, utm_medium=utm_medium, utm_campaign=utm_campaign)
    return analytics.get_filtered_utm_data(db, funnel_id, date_from, date_to, filters)


@router.get("/{funnel_id}/analytics/top-utm", response_model=List[UtmBreakdownRow])
def get_top_utm_combinations(
    funnel_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return analytics.get_top_utm_combinations(db, funnel_id, date_from, date_to, limit=limit)


@router.get("/{funnel_id}/analytics/completion-times", response_model=CompletionTimes)
def get_completion_times(
    funnel_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return analytics.get_completion_times(db, funnel_id, date_from, date_to)


@router.get("/{funnel_id}/analytics/export")
def export_funnel_analytics(
    funnel_id: int,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    fmt: Literal["csv", "json"] = Query("csv", alias="format"),
    db: Session = Depends(get_db),
):
    """Download funnel analytics as CSV or JSON"""
    result = analytics.get_funnel_analytics(db, funnel_id, date_from, date_to)
    filename = f"funnel-{funnel_id}-analytics-{result.date_from}-{result.date_to}.{fmt}"
    return Response(
        content=export.render_analytics(result, fmt),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{funnel_id}/events/export")
def export_tracking_events(
    funnel_id: int,
    fmt: Literal["csv", "json"] = Query("csv", alias="format"),
    db: Session = Depends(get_db),
):
    """Download every raw tracking event of a funnel, newest first"""
    funnel = funnel_manager.get_funnel(db, funnel_id, include_steps=False)
    filename = f"funnel-{funnel.id}-events.{fmt}"
    return Response(
        content=export.export_tracking_events(db, funnel.id, fmt),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
