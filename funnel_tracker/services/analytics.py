"""
Funnel aggregation engine.

All figures are computed from tracking_events joined to the funnel's current
steps, restricted to [date_from 00:00:00, date_to 23:59:59.999999] in server
time. Events whose step was replaced by a later step update no longer join
and are not counted. Rates are percentages, left unrounded.
"""
import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, desc, distinct, func
from sqlalchemy.orm import Session

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import NotFoundError, ValidationError
from funnel_tracker.core.time import day_bounds, default_range
from funnel_tracker.models.funnel import Funnel, FunnelStep
from funnel_tracker.models.tracking_event import TrackingEvent
from funnel_tracker.schemas.analytics import (
    AnalyticsSummary,
    CompletionTime,
    CompletionTimes,
    DropOffPoint,
    FunnelAnalytics,
    StepAnalytics,
    UtmBreakdownRow,
    UtmFilters,
)

logger = logging.getLogger(__name__)

NOT_SET = "not set"

# Breakdown grouping order
BREAKDOWN_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def _percent(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return part / whole * 100.0


def _resolve_range(
    date_from: Optional[date],
    date_to: Optional[date],
) -> Tuple[date, date]:
    date_from, date_to = default_range(date_from, date_to, settings.ANALYTICS_DEFAULT_PERIOD_DAYS)
    if date_from > date_to:
        raise ValidationError("date_from must not be after date_to.", code="invalid_date_range")
    return date_from, date_to


def _require_funnel(db: Session, funnel_id: int) -> Funnel:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise NotFoundError("Funnel not found.")
    return funnel


def calculate_conversion_rates(steps: List[StepAnalytics]) -> List[StepAnalytics]:
    """Step i converts from step i-1. The first step is the baseline and carries no rate."""
    for index, step in enumerate(steps):
        if index == 0:
            step.conversion_rate = None
        else:
            step.conversion_rate = _percent(step.unique_visitors, steps[index - 1].unique_visitors)
    return steps


def calculate_summary_metrics(
    steps: List[StepAnalytics],
    drop_off_threshold: Optional[float] = None,
    avg_time_to_complete: float = 0.0,
) -> AnalyticsSummary:
    if not steps:
        return AnalyticsSummary()

    if drop_off_threshold is None:
        drop_off_threshold = settings.DROP_OFF_THRESHOLD

    total_entries = steps[0].unique_visitors
    total_completions = steps[-1].unique_visitors

    drop_off_points = []
    for previous, step in zip(steps, steps[1:]):
        if previous.unique_visitors <= 0:
            continue
        drop_off_rate = _percent(previous.unique_visitors - step.unique_visitors, previous.unique_visitors)
        if drop_off_rate > drop_off_threshold:
            drop_off_points.append(DropOffPoint(
                step_order=step.step_order,
                step_name=step.step_name,
                drop_off_rate=drop_off_rate,
            ))

    return AnalyticsSummary(
        total_entries=total_entries,
        total_completions=total_completions,
        overall_conversion_rate=_percent(total_completions, total_entries),
        avg_time_to_complete=avg_time_to_complete,
        drop_off_points=drop_off_points,
    )


def get_step_performance(
    db: Session,
    funnel_id: int,
    date_from: date,
    date_to: date,
) -> List[StepAnalytics]:
    """One row per step, in step_order, with zeroes for steps that saw no events."""
    start, end = day_bounds(date_from, date_to)
    rows = db.query(
        FunnelStep,
        func.count(distinct(TrackingEvent.session_id)).label("unique_visitors"),
        func.count(TrackingEvent.id).label("total_events"),
        func.min(TrackingEvent.created_at).label("first_event"),
        func.max(TrackingEvent.created_at).label("last_event"),
    ).outerjoin(
        TrackingEvent,
        and_(
            TrackingEvent.step_id == FunnelStep.id,
            TrackingEvent.funnel_id == FunnelStep.funnel_id,
            TrackingEvent.created_at.between(start, end),
        ),
    ).filter(
        FunnelStep.funnel_id == funnel_id
    ).group_by(FunnelStep.id).order_by(FunnelStep.step_order).all()

    steps = [
        StepAnalytics(
            step_id=step.id,
            step_order=step.step_order,
            step_name=step.step_name or "",
            step_type=step.step_type,
            page_id=step.page_id,
            form_id=step.form_id,
            unique_visitors=unique_visitors or 0,
            total_events=total_events or 0,
            first_event=first_event,
            last_event=last_event,
        )
        for step, unique_visitors, total_events, first_event, last_event in rows
    ]
    return calculate_conversion_rates(steps)


def _utm_breakdown_query(db: Session, funnel_id: int, date_from: date, date_to: date):
    order_bounds = db.query(
        func.min(FunnelStep.step_order), func.max(FunnelStep.step_order)
    ).filter(FunnelStep.funnel_id == funnel_id).one()
    entry_order, exit_order = order_bounds
    if entry_order is None:
        return None

    start, end = day_bounds(date_from, date_to)
    group_columns = [
        func.coalesce(getattr(TrackingEvent, field), "").label(field) for field in BREAKDOWN_FIELDS
    ]
    unique_visitors = func.count(distinct(TrackingEvent.session_id)).label("unique_visitors")

    return db.query(
        *group_columns,
        unique_visitors,
        func.count(TrackingEvent.id).label("total_events"),
        func.count(distinct(case(
            (FunnelStep.step_order == entry_order, TrackingEvent.session_id),
        ))).label("funnel_entries"),
        func.count(distinct(case(
            (FunnelStep.step_order == exit_order, TrackingEvent.session_id),
        ))).label("funnel_completions"),
    ).join(
        FunnelStep, TrackingEvent.step_id == FunnelStep.id
    ).filter(
        TrackingEvent.funnel_id == funnel_id,
        FunnelStep.funnel_id == funnel_id,
        TrackingEvent.created_at.between(start, end),
    ).group_by(*group_columns).order_by(desc(unique_visitors), *group_columns)


def _breakdown_rows(rows) -> List[UtmBreakdownRow]:
    result = []
    for row in rows:
        labels = {field: (getattr(row, field) or NOT_SET) for field in BREAKDOWN_FIELDS}
        result.append(UtmBreakdownRow(
            **labels,
            unique_visitors=row.unique_visitors or 0,
            total_events=row.total_events or 0,
            funnel_entries=row.funnel_entries or 0,
            funnel_completions=row.funnel_completions or 0,
            conversion_rate=_percent(row.funnel_completions or 0, row.funnel_entries or 0),
        ))
    return result


def get_utm_breakdown(
    db: Session,
    funnel_id: int,
    date_from: date,
    date_to: date,
    limit: Optional[int] = None,
) -> List[UtmBreakdownRow]:
    """
    Performance per (source, medium, campaign, term, content) tuple.

    Every event is attributed by its own UTM tags, so one session can show up
    under several tuples. Empty values are reported as "not set".
    """
    query = _utm_breakdown_query(db, funnel_id, date_from, date_to)
    if query is None:
        return []
    return _breakdown_rows(query.limit(limit or settings.UTM_BREAKDOWN_LIMIT).all())


def get_funnel_analytics(
    db: Session,
    funnel_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> FunnelAnalytics:
    _require_funnel(db, funnel_id)
    date_from, date_to = _resolve_range(date_from, date_to)

    steps = get_step_performance(db, funnel_id, date_from, date_to)
    if not steps:
        return FunnelAnalytics(funnel_id=funnel_id, date_from=date_from, date_to=date_to)

    completions = _completion_times(db, funnel_id, date_from, date_to, len(steps))
    summary = calculate_summary_metrics(
        steps,
        settings.DROP_OFF_THRESHOLD,
        avg_time_to_complete=_average_minutes(completions),
    )

    logger.debug(
        "[ANALYTICS] Funnel %s %s..%s entries=%d completions=%d",
        funnel_id, date_from, date_to, summary.total_entries, summary.total_completions,
    )
    return FunnelAnalytics(
        funnel_id=funnel_id,
        date_from=date_from,
        date_to=date_to,
        steps=steps,
        summary=summary,
        utm_breakdown=get_utm_breakdown(db, funnel_id, date_from, date_to),
    )


def get_filtered_utm_data(
    db: Session,
    funnel_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    filters: Optional[UtmFilters] = None,
) -> List[UtmBreakdownRow]:
    """UTM breakdown narrowed by case-insensitive substring filters on source, medium and campaign."""
    _require_funnel(db, funnel_id)
    date_from, date_to = _resolve_range(date_from, date_to)

    query = _utm_breakdown_query(db, funnel_id, date_from, date_to)
    if query is None:
        return []

    filters = filters or UtmFilters()
    for field in ("utm_source", "utm_medium", "utm_campaign"):
        value = (getattr(filters, field) or "").strip()
        if value:
            query = query.filter(getattr(TrackingEvent, field).icontains(value, autoescape=True))

    return _breakdown_rows(query.limit(settings.UTM_FILTER_LIMIT).all())


def get_top_utm_combinations(
    db: Session,
    funnel_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 10,
) -> List[UtmBreakdownRow]:
    """Best converting UTM tuples; ties broken by unique visitors."""
    _require_funnel(db, funnel_id)
    date_from, date_to = _resolve_range(date_from, date_to)

    query = _utm_breakdown_query(db, funnel_id, date_from, date_to)
    if query is None:
        return []
    # Rank every tuple; the breakdown cap keeps only the highest-traffic ones
    rows = _breakdown_rows(query.all())
    rows.sort(key=lambda row: (-row.conversion_rate, -row.unique_visitors))
    return rows[:limit]


def _completion_times(
    db: Session,
    funnel_id: int,
    date_from: date,
    date_to: date,
    step_count: int,
) -> List[CompletionTime]:
    if step_count <= 0:
        return []

    start, end = day_bounds(date_from, date_to)
    rows = db.query(
        TrackingEvent.session_id,
        func.min(TrackingEvent.created_at).label("first_step_time"),
        func.max(TrackingEvent.created_at).label("last_step_time"),
    ).join(
        FunnelStep, TrackingEvent.step_id == FunnelStep.id
    ).filter(
        TrackingEvent.funnel_id == funnel_id,
        FunnelStep.funnel_id == funnel_id,
        TrackingEvent.created_at.between(start, end),
    ).group_by(
        TrackingEvent.session_id
    ).having(
        func.count(distinct(FunnelStep.step_order)) == step_count
    ).all()

    completions = [
        CompletionTime(
            session_id=session_id,
            first_step_time=first,
            last_step_time=last,
            completion_time_minutes=int((last - first).total_seconds() // 60),
        )
        for session_id, first, last in rows
    ]
    completions.sort(key=lambda c: (c.completion_time_minutes, c.session_id))
    return completions


def _average_minutes(completions: List[CompletionTime]) -> float:
    if not completions:
        return 0.0
    return sum(c.completion_time_minutes for c in completions) / len(completions)


def get_completion_times(
    db: Session,
    funnel_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> CompletionTimes:
    """Sessions that reached every step, with minutes from first to last event, fastest first."""
    _require_funnel(db, funnel_id)
    date_from, date_to = _resolve_range(date_from, date_to)

    step_count = db.query(func.count(FunnelStep.id)).filter(FunnelStep.funnel_id == funnel_id).scalar() or 0
    completions = _completion_times(db, funnel_id, date_from, date_to, step_count)
    return CompletionTimes(
        funnel_id=funnel_id,
        date_from=date_from,
        date_to=date_to,
        completions=completions,
        average_minutes=_average_minutes(completions),
    )


def get_average_completion_time(
    db: Session,
    funnel_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> float:
    return get_completion_times(db, funnel_id, date_from, date_to).average_minutes
