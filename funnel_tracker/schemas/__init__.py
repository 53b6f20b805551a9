from funnel_tracker.schemas.funnel import Funnel, FunnelCreate, FunnelUpdate, FunnelWithSteps, FunnelStep, FunnelPage
from funnel_tracker.schemas.tracking import TrackEventIn, TrackingOutcome, TrackingStatus, UtmParams
from funnel_tracker.schemas.consent import ConsentUpdate, ConsentState, ConsentStatistics
from funnel_tracker.schemas.analytics import FunnelAnalytics, StepAnalytics, AnalyticsSummary, UtmBreakdownRow

__all__ = [
    "Funnel", "FunnelCreate", "FunnelUpdate", "FunnelWithSteps", "FunnelStep", "FunnelPage",
    "TrackEventIn", "TrackingOutcome", "TrackingStatus", "UtmParams",
    "ConsentUpdate", "ConsentState", "ConsentStatistics",
    "FunnelAnalytics", "StepAnalytics", "AnalyticsSummary", "UtmBreakdownRow",
]
