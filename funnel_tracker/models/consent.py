import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from funnel_tracker.db.session import Base


class ConsentStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PARTIAL = "partial"


class ConsentRecord(Base):
    """Audit row written on every consent decision; pruned after expires_at."""

    __tablename__ = "cookie_consent"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(255), nullable=False, index=True)
    consent_status = Column(String(20), nullable=False, index=True)
    consent_categories = Column(JSON, nullable=True)  # {category: bool}
    ip_address = Column(String(45), nullable=False, default="", server_default="")
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
