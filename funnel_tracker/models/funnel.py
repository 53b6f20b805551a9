import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from funnel_tracker.db.session import Base


class FunnelStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class StepType(str, enum.Enum):
    PAGE = "page"
    FORM = "form"


class Funnel(Base):
    __tablename__ = "funnels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    # Stored as plain strings; values come from FunnelStatus
    status = Column(String(20), nullable=False, default=FunnelStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    steps = relationship(
        "FunnelStep",
        back_populates="funnel",
        order_by="FunnelStep.step_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class FunnelStep(Base):
    __tablename__ = "funnel_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    funnel_id = Column(Integer, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)  # 1-based, dense within a funnel
    step_type = Column(String(20), nullable=False)  # page | form
    step_name = Column(String(255), nullable=False, default="")
    page_id = Column(Integer, nullable=True, index=True)  # External page reference (page steps)
    form_id = Column(Integer, nullable=True, index=True)  # External form reference (form steps)

    funnel = relationship("Funnel", back_populates="steps")

    # Step ids are never reused: old tracking events keep pointing at replaced steps
    __table_args__ = (
        UniqueConstraint("funnel_id", "step_order", name="uq_funnel_steps_funnel_order"),
        {"sqlite_autoincrement": True},
    )
