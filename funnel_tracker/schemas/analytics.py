from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class StepAnalytics(BaseModel):
    step_id: Optional[int] = None
    step_order: int
    step_name: str = ""
    step_type: str
    page_id: Optional[int] = None
    form_id: Optional[int] = None
    unique_visitors: int = 0
    total_events: int = 0
    conversion_rate: Optional[float] = None  # Percentage of the previous step; None for the first step
    first_event: Optional[datetime] = None
    last_event: Optional[datetime] = None


class DropOffPoint(BaseModel):
    step_order: int
    step_name: str
    drop_off_rate: float


class AnalyticsSummary(BaseModel):
    total_entries: int = 0
    total_completions: int = 0
    overall_conversion_rate: float = 0.0
    avg_time_to_complete: float = 0.0  # Minutes
    drop_off_points: List[DropOffPoint] = []


class UtmBreakdownRow(BaseModel):
    utm_source: str
    utm_medium: str
    utm_campaign: str
    utm_term: str
    utm_content: str
    unique_visitors: int = 0
    total_events: int = 0
    funnel_entries: int = 0
    funnel_completions: int = 0
    conversion_rate: float = 0.0


class FunnelAnalytics(BaseModel):
    funnel_id: int
    date_from: date
    date_to: date
    steps: List[StepAnalytics] = []
    summary: AnalyticsSummary = AnalyticsSummary()
    utm_breakdown: List[UtmBreakdownRow] = []


class UtmFilters(BaseModel):
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""


class CompletionTime(BaseModel):
    session_id: str
    first_step_time: datetime
    last_step_time: datetime
    completion_time_minutes: int


class CompletionTimes(BaseModel):
    funnel_id: int
    date_from: date
    date_to: date
    completions: List[CompletionTime] = []
    average_minutes: float = 0.0


# UTM reporting
class UtmReportRow(BaseModel):
    utm_source: str
    utm_medium: str
    utm_campaign: str
    utm_content: str
    utm_term: str
    unique_sessions: int
    total_events: int
    event_date: date


class UtmReportSummary(BaseModel):
    total_sessions: int = 0
    total_events: int = 0
    sessions_with_utm: int = 0


class UtmReport(BaseModel):
    date_from: date
    date_to: date
    funnel_id: Optional[int] = None
    data: List[UtmReportRow] = []
    summary: UtmReportSummary = UtmReportSummary()


class UtmValueCount(BaseModel):
    value: str
    sessions: int


class UtmStatistics(BaseModel):
    top_sources: List[UtmValueCount] = []
    top_mediums: List[UtmValueCount] = []
    top_campaigns: List[UtmValueCount] = []
    period_days: int
