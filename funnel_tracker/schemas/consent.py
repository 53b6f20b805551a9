from datetime import datetime
from typing import Dict, Literal

from pydantic import BaseModel


class ConsentUpdate(BaseModel):
    consent_action: Literal["accept", "decline", "customize"]
    categories: Dict[str, bool] = {}


class ConsentState(BaseModel):
    status: str
    categories: Dict[str, bool]
    has_analytics_consent: bool
    has_marketing_consent: bool


class ConsentStatistics(BaseModel):
    total_consents: int = 0
    accepted: int = 0
    declined: int = 0
    partial: int = 0
    period_days: int


class ConsentDecisionOut(BaseModel):
    status: str
    categories: Dict[str, bool]
    expires_at: datetime
    message: str = "Consent updated successfully."
