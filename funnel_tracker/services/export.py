"""
CSV / JSON serialization of funnel analytics and raw tracking events.
"""
import csv
import io
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import TypeAdapter
from sqlalchemy import desc
from sqlalchemy.orm import Session

from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.models.tracking_event import TrackingEvent
from funnel_tracker.schemas.analytics import FunnelAnalytics, StepAnalytics
from funnel_tracker.schemas.tracking import TrackingEventOut

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json")

CSV_HEADER = [
    "Step Order",
    "Step Name",
    "Step Type",
    "Unique Visitors",
    "Total Events",
    "Conversion Rate (%)",
    "First Event",
    "Last Event",
]
UNNAMED_STEP = "Unnamed Step"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

EVENT_COLUMNS = list(TrackingEventOut.model_fields)

_events_adapter = TypeAdapter(List[TrackingEventOut])


def _format_datetime(value: Optional[datetime]) -> str:
    return value.strftime(DATETIME_FORMAT) if value else ""


def _parse_datetime(value: str) -> Optional[datetime]:
    return datetime.strptime(value, DATETIME_FORMAT) if value else None


def _writer(buffer: io.StringIO):
    return csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")


def to_csv(analytics: FunnelAnalytics) -> str:
    """One header row plus one row per step. The first step's rate is left empty."""
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(CSV_HEADER)
    for step in analytics.steps:
        rate = "" if step.conversion_rate is None else f"{step.conversion_rate:.2f}"
        writer.writerow([
            step.step_order,
            step.step_name.strip() or UNNAMED_STEP,
            step.step_type.capitalize(),
            step.unique_visitors,
            step.total_events,
            rate,
            _format_datetime(step.first_event),
            _format_datetime(step.last_event),
        ])
    return buffer.getvalue()


def parse_csv(text: str) -> List[StepAnalytics]:
    """Read back what to_csv wrote. Rates come back rounded to 2 decimals."""
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames != CSV_HEADER:
        raise ValidationError("Unexpected CSV header.", code="invalid_csv")

    steps = []
    for row in reader:
        rate = row["Conversion Rate (%)"]
        steps.append(StepAnalytics(
            step_order=int(row["Step Order"]),
            step_name="" if row["Step Name"] == UNNAMED_STEP else row["Step Name"],
            step_type=row["Step Type"].lower(),
            unique_visitors=int(row["Unique Visitors"]),
            total_events=int(row["Total Events"]),
            conversion_rate=float(rate) if rate else None,
            first_event=_parse_datetime(row["First Event"]),
            last_event=_parse_datetime(row["Last Event"]),
        ))
    return steps


def to_json(analytics: FunnelAnalytics) -> str:
    return analytics.model_dump_json(indent=2)


def render_analytics(analytics: FunnelAnalytics, fmt: str) -> str:
    if fmt == "csv":
        return to_csv(analytics)
    if fmt == "json":
        return to_json(analytics)
    raise ValidationError(f"Unsupported export format: {fmt}", code="invalid_format")


def events_to_csv(events: List[TrackingEventOut]) -> str:
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(EVENT_COLUMNS)
    for event in events:
        row = []
        for column in EVENT_COLUMNS:
            value = getattr(event, column)
            if isinstance(value, datetime):
                value = _format_datetime(value)
            row.append("" if value is None else value)
        writer.writerow(row)
    return buffer.getvalue()


def events_to_json(events: List[TrackingEventOut]) -> str:
    return _events_adapter.dump_json(events, indent=2).decode("utf-8")


def export_tracking_events(db: Session, funnel_id: int, fmt: str = "csv") -> str:
    """Every raw event of a funnel, newest first."""
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}", code="invalid_format")

    rows = db.query(TrackingEvent).filter(
        TrackingEvent.funnel_id == funnel_id
    ).order_by(desc(TrackingEvent.created_at), desc(TrackingEvent.id)).all()
    events = [TrackingEventOut.model_validate(row) for row in rows]

    logger.info("[EXPORT] Exporting %d events for funnel %s as %s", len(events), funnel_id, fmt)
    if fmt == "csv":
        return events_to_csv(events)
    return events_to_json(events)
