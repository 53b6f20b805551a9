import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from funnel_tracker.db.session import Base


class EventType(str, enum.Enum):
    PAGE_VIEW = "page_view"
    FORM_STEP = "form_step"
    FORM_SUBMISSION = "form_submission"


UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")


class TrackingEvent(Base):
    """One tracked interaction against one funnel step. Rows are never updated."""

    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    funnel_id = Column(Integer, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    # Plain reference, no FK: replacing a funnel's steps leaves older events pointing
    # at step ids that no longer exist, and those events drop out of step analytics.
    step_id = Column(Integer, nullable=True, index=True)
    session_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)  # page_view, form_step, form_submission
    page_id = Column(Integer, nullable=True, index=True)
    form_id = Column(Integer, nullable=True, index=True)
    form_step_index = Column(Integer, nullable=True)  # Only for form_step events
    utm_source = Column(String(255), nullable=False, default="", server_default="")
    utm_medium = Column(String(255), nullable=False, default="", server_default="")
    utm_campaign = Column(String(255), nullable=False, default="", server_default="")
    utm_content = Column(String(255), nullable=False, default="", server_default="")
    utm_term = Column(String(255), nullable=False, default="", server_default="")
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=False, default="", server_default="")
    created_at = Column(DateTime, default=datetime.now, nullable=False, index=True)
