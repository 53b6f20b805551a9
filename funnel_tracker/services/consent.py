"""
Cookie consent gate.

Consent lives client-side in two cookies (status and a JSON category map).
Every decision is also stored as a ConsentRecord for auditing; the stored row
never gates tracking, the cookies do.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional
from urllib.parse import quote, unquote

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import now_local
from funnel_tracker.models.consent import ConsentRecord, ConsentStatus

logger = logging.getLogger(__name__)

STATUS_COOKIE_NAME = "ft_consent_status"
CATEGORIES_COOKIE_NAME = "ft_consent_categories"

CONSENT_CATEGORIES = ("necessary", "analytics", "marketing", "preferences")


@dataclass
class ConsentContext:
    status: str = ""  # '' when the visitor has not decided yet
    categories: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_cookies(cls, cookies: Dict[str, str]) -> "ConsentContext":
        status = cookies.get(STATUS_COOKIE_NAME, "") or ""
        categories: Dict[str, bool] = {}
        raw = cookies.get(CATEGORIES_COOKIE_NAME)
        if raw:
            try:
                parsed = json.loads(unquote(raw))
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                # Only literal booleans count; "true" or 1 do not grant anything
                categories = {
                    key: value for key, value in parsed.items()
                    if key in CONSENT_CATEGORIES and isinstance(value, bool)
                }
        return cls(status=status, categories=categories)


@dataclass
class ConsentDecision:
    status: str
    categories: Dict[str, bool]
    expires_at: datetime
    record_id: Optional[int] = None

    @property
    def cookie_max_age(self) -> int:
        return settings.CONSENT_EXPIRY_DAYS * 24 * 60 * 60

    def cookie_values(self) -> Dict[str, str]:
        return {
            STATUS_COOKIE_NAME: self.status,
            # Percent-encoded so the JSON survives as a plain cookie token
            CATEGORIES_COOKIE_NAME: quote(json.dumps(self.categories, separators=(",", ":")), safe=""),
        }

    def context(self) -> ConsentContext:
        return ConsentContext(status=self.status, categories=dict(self.categories))


def has_consent(ctx: ConsentContext, category: str = "analytics") -> bool:
    if not settings.COOKIE_CONSENT_ENABLED:
        return True
    if category == "necessary":
        return True
    if ctx.status == ConsentStatus.ACCEPTED.value:
        return True
    if ctx.status == ConsentStatus.PARTIAL.value:
        return ctx.categories.get(category) is True
    return False


def get_consent_categories(ctx: ConsentContext) -> Dict[str, bool]:
    """Full category map for the current visitor; necessary is always granted."""
    return {category: has_consent(ctx, category) for category in CONSENT_CATEGORIES}


def apply_consent_action(action: str, categories: Optional[Dict[str, bool]] = None):
    """Translate a banner action into (status, categories)."""
    if action == "accept":
        return ConsentStatus.ACCEPTED.value, {category: True for category in CONSENT_CATEGORIES}

    if action == "decline":
        return ConsentStatus.DECLINED.value, {"necessary": True}

    if action == "customize":
        chosen = {
            key: bool(value) for key, value in (categories or {}).items()
            if key in CONSENT_CATEGORIES
        }
        chosen["necessary"] = True
        if any(value for key, value in chosen.items() if key != "necessary"):
            return ConsentStatus.PARTIAL.value, chosen
        return ConsentStatus.DECLINED.value, chosen

    raise ValidationError("Invalid consent action.", code="invalid_action")


def set_consent(
    db: Session,
    status: str,
    categories: Dict[str, bool],
    session_id: str = "",
    ip_address: str = "",
    user_agent: Optional[str] = None,
) -> ConsentDecision:
    """
    Record a consent decision and return what the HTTP layer should write
    into the consent cookies.

    A failure to store the audit row is logged and does not undo the
    visitor's decision.
    """
    if status not in {s.value for s in ConsentStatus}:
        raise ValidationError("Invalid consent status.", code="invalid_status")

    categories = {key: bool(value) for key, value in categories.items() if key in CONSENT_CATEGORIES}
    categories["necessary"] = True

    now = now_local()
    expires_at = now + timedelta(days=settings.CONSENT_EXPIRY_DAYS)
    decision = ConsentDecision(status=status, categories=categories, expires_at=expires_at)

    record = ConsentRecord(
        session_id=session_id or "",
        consent_status=status,
        consent_categories=categories,
        ip_address=ip_address or "",
        user_agent=user_agent,
        created_at=now,
        expires_at=expires_at,
    )
    try:
        db.add(record)
        db.commit()
        decision.record_id = record.id
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[CONSENT] Failed to store consent record for session %s: %s", session_id, e)

    logger.info("[CONSENT] Session %s consent=%s categories=%s", session_id, status, categories)
    return decision


def consent_statistics(db: Session, days: int = 30) -> Dict[str, int]:
    since = now_local() - timedelta(days=days)
    rows = db.query(
        ConsentRecord.consent_status, func.count(ConsentRecord.id)
    ).filter(
        ConsentRecord.created_at >= since
    ).group_by(ConsentRecord.consent_status).all()

    counts = {status: count for status, count in rows}
    return {
        "total_consents": sum(counts.values()),
        "accepted": counts.get(ConsentStatus.ACCEPTED.value, 0),
        "declined": counts.get(ConsentStatus.DECLINED.value, 0),
        "partial": counts.get(ConsentStatus.PARTIAL.value, 0),
    }
