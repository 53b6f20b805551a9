import enum
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from funnel_tracker.models.tracking_event import UTM_FIELDS


class UtmParams(BaseModel):
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    utm_content: str = ""
    utm_term: str = ""

    @field_validator(*UTM_FIELDS, mode="before")
    @classmethod
    def _default_malformed(cls, value: Any) -> str:
        # Untrusted instrumentation: anything that is not a string counts as "not set"
        if not isinstance(value, str):
            return ""
        return value


class TrackEventIn(UtmParams):
    """Payload posted by client-side instrumentation."""

    page_id: Optional[int] = None
    form_id: Optional[int] = None
    step_index: Optional[int] = None
    total_steps: Optional[int] = None
    session_id: Optional[str] = Field(None, max_length=255)


class TrackingStatus(str, enum.Enum):
    TRACKED = "tracked"
    SKIPPED = "skipped"  # No funnel step references the page/form
    CONSENT_REQUIRED = "consent_required"  # Do not retry
    DISABLED = "disabled"
    FAILED = "failed"  # Storage error, logged only


class TrackingOutcome(BaseModel):
    status: TrackingStatus
    event_ids: List[int] = []
    session_id: Optional[str] = None
    funnel_steps_found: int = 0
    message: str = ""


class TrackingEventOut(BaseModel):
    id: int
    funnel_id: int
    step_id: Optional[int] = None
    session_id: str
    event_type: str
    page_id: Optional[int] = None
    form_id: Optional[int] = None
    form_step_index: Optional[int] = None
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    utm_content: str = ""
    utm_term: str = ""
    user_agent: Optional[str] = None
    ip_address: str = ""
    created_at: datetime

    class Config:
        from_attributes = True
