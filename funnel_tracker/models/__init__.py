from funnel_tracker.models.funnel import Funnel, FunnelStep, FunnelStatus, StepType
from funnel_tracker.models.tracking_event import TrackingEvent, EventType, UTM_FIELDS
from funnel_tracker.models.consent import ConsentRecord, ConsentStatus

__all__ = [
    "Funnel", "FunnelStep", "FunnelStatus", "StepType",
    "TrackingEvent", "EventType", "UTM_FIELDS",
    "ConsentRecord", "ConsentStatus",
]
