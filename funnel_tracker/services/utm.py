"""
UTM parameter handling and reporting across all funnels.
"""
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import desc, distinct, func
from sqlalchemy.orm import Session

from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import day_bounds, now_local
from funnel_tracker.models.tracking_event import UTM_FIELDS, TrackingEvent
from funnel_tracker.schemas.analytics import (
    UtmReport,
    UtmReportRow,
    UtmReportSummary,
    UtmStatistics,
    UtmValueCount,
)
from funnel_tracker.schemas.tracking import UtmParams

MAX_UTM_LENGTH = 255
MAX_DISTINCT_VALUES = 100

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_utm_value(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    value = _TAG_RE.sub("", value)
    value = _CONTROL_RE.sub(" ", value)
    value = _WHITESPACE_RE.sub(" ", value).strip()
    return value[:MAX_UTM_LENGTH]


def sanitize_utm_parameters(data: Mapping[str, Any]) -> UtmParams:
    """Pick the five UTM fields out of arbitrary input. Anything missing or malformed becomes ''."""
    return UtmParams(**{field: sanitize_utm_value(data.get(field)) for field in UTM_FIELDS})


def generate_utm_url(base_url: str, params: Mapping[str, Any]) -> str:
    """Append non-empty UTM params to base_url, keeping its existing query string."""
    utm = sanitize_utm_parameters(params)
    parts = urlsplit(base_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    existing = {key for key, _ in query}
    for field in UTM_FIELDS:
        value = getattr(utm, field)
        if value and field not in existing:
            query.append((field, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def get_utm_report(
    db: Session,
    date_from: date,
    date_to: date,
    funnel_id: Optional[int] = None,
    limit: int = 100,
) -> UtmReport:
    start, end = day_bounds(date_from, date_to)
    filters = [TrackingEvent.created_at.between(start, end)]
    if funnel_id is not None:
        filters.append(TrackingEvent.funnel_id == funnel_id)

    event_date = func.date(TrackingEvent.created_at).label("event_date")
    unique_sessions = func.count(distinct(TrackingEvent.session_id)).label("unique_sessions")
    utm_columns = [getattr(TrackingEvent, field) for field in UTM_FIELDS]

    rows = db.query(
        *utm_columns,
        unique_sessions,
        func.count(TrackingEvent.id).label("total_events"),
        event_date,
    ).filter(*filters).group_by(
        *utm_columns, event_date
    ).order_by(desc(event_date), desc(unique_sessions)).limit(limit).all()

    data = []
    for row in rows:
        day = row.event_date
        if isinstance(day, str):
            # SQLite returns DATE() as text
            day = date.fromisoformat(day)
        data.append(UtmReportRow(
            utm_source=row.utm_source or "",
            utm_medium=row.utm_medium or "",
            utm_campaign=row.utm_campaign or "",
            utm_content=row.utm_content or "",
            utm_term=row.utm_term or "",
            unique_sessions=row.unique_sessions,
            total_events=row.total_events,
            event_date=day,
        ))

    totals = db.query(
        func.count(distinct(TrackingEvent.session_id)),
        func.count(TrackingEvent.id),
    ).filter(*filters).one()
    with_utm = db.query(func.count(distinct(TrackingEvent.session_id))).filter(
        *filters, TrackingEvent.utm_source != ""
    ).scalar()

    return UtmReport(
        date_from=date_from,
        date_to=date_to,
        funnel_id=funnel_id,
        data=data,
        summary=UtmReportSummary(
            total_sessions=totals[0] or 0,
            total_events=totals[1] or 0,
            sessions_with_utm=with_utm or 0,
        ),
    )


def _top_values(db: Session, column, since, limit: int) -> List[UtmValueCount]:
    sessions = func.count(distinct(TrackingEvent.session_id)).label("sessions")
    rows = db.query(column, sessions).filter(
        TrackingEvent.created_at >= since,
        column != "",
    ).group_by(column).order_by(desc(sessions), column).limit(limit).all()
    return [UtmValueCount(value=value, sessions=count) for value, count in rows]


def get_utm_statistics(db: Session, days: int = 30, limit: int = 10) -> UtmStatistics:
    since = now_local() - timedelta(days=days)
    return UtmStatistics(
        top_sources=_top_values(db, TrackingEvent.utm_source, since, limit),
        top_mediums=_top_values(db, TrackingEvent.utm_medium, since, limit),
        top_campaigns=_top_values(db, TrackingEvent.utm_campaign, since, limit),
        period_days=days,
    )


def get_available_utm_values(db: Session, param: str) -> List[str]:
    """Distinct non-empty values seen for one UTM column, for filter dropdowns."""
    if param not in UTM_FIELDS:
        raise ValidationError(f"Unknown UTM parameter: {param}", code="invalid_utm_param")
    column = getattr(TrackingEvent, param)
    rows = db.query(distinct(column)).filter(column != "").order_by(column).limit(MAX_DISTINCT_VALUES).all()
    return [value for (value,) in rows]


def utm_dict(params: UtmParams) -> Dict[str, str]:
    return {field: getattr(params, field) for field in UTM_FIELDS}
