from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from funnel_tracker.api.deps import get_client_context, get_consent_context
from funnel_tracker.db.session import get_db
from funnel_tracker.schemas.consent import (
    ConsentDecisionOut,
    ConsentState,
    ConsentStatistics,
    ConsentUpdate,
)
from funnel_tracker.services import consent as consent_service
from funnel_tracker.services.consent import ConsentContext
from funnel_tracker.services.session_resolver import ClientContext, get_client_ip, get_user_agent, resolve_session

router = APIRouter()


@router.get("", response_model=ConsentState)
def get_consent(consent_ctx: ConsentContext = Depends(get_consent_context)):
    """Current visitor's consent as read from the consent cookies"""
    return ConsentState(
        status=consent_ctx.status,
        categories=consent_service.get_consent_categories(consent_ctx),
        has_analytics_consent=consent_service.has_consent(consent_ctx, "analytics"),
        has_marketing_consent=consent_service.has_consent(consent_ctx, "marketing"),
    )


@router.post("", response_model=ConsentDecisionOut)
def update_consent(
    update: ConsentUpdate,
    response: Response,
    db: Session = Depends(get_db),
    client_ctx: ClientContext = Depends(get_client_context),
):
    """Apply a banner action (accept / decline / customize) and write the consent cookies"""
    status_value, categories = consent_service.apply_consent_action(update.consent_action, update.categories)
    decision = consent_service.set_consent(
        db,
        status_value,
        categories,
        session_id=resolve_session(client_ctx).session_id,
        ip_address=get_client_ip(client_ctx),
        user_agent=get_user_agent(client_ctx),
    )

    for name, value in decision.cookie_values().items():
        response.set_cookie(name, value, max_age=decision.cookie_max_age, samesite="lax")

    return ConsentDecisionOut(
        status=decision.status,
        categories=decision.categories,
        expires_at=decision.expires_at,
    )


@router.get("/statistics", response_model=ConsentStatistics)
def get_consent_statistics(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    return ConsentStatistics(**consent_service.consent_statistics(db, days), period_days=days)
