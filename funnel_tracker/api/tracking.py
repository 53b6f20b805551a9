"""
Public tracking endpoints called by client-side instrumentation.

Responses are always 200 with a TrackingOutcome so a visitor's page never
breaks on a tracking problem. Only malformed payloads get a 400.
"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from funnel_tracker.api.deps import get_client_context, get_consent_context
from funnel_tracker.core.config import settings
from funnel_tracker.db.session import get_db
from funnel_tracker.models.tracking_event import EventType
from funnel_tracker.schemas.tracking import TrackEventIn, TrackingOutcome, TrackingStatus
from funnel_tracker.services.consent import ConsentContext
from funnel_tracker.services.session_resolver import SESSION_COOKIE_NAME, ClientContext
from funnel_tracker.services.tracking import record_event

router = APIRouter()


def _track(
    event_type: EventType,
    payload: TrackEventIn,
    response: Response,
    db: Session,
    client_ctx: ClientContext,
    consent_ctx: ConsentContext,
) -> TrackingOutcome:
    client_ctx.posted_session_id = payload.session_id
    outcome = record_event(db, event_type, payload, client_ctx, consent_ctx)

    # Consent was checked by record_event; only persist the id when we got past it
    if (
        outcome.session_id
        and outcome.status in (TrackingStatus.TRACKED, TrackingStatus.SKIPPED)
        and client_ctx.cookies.get(SESSION_COOKIE_NAME) != outcome.session_id
    ):
        response.set_cookie(
            SESSION_COOKIE_NAME,
            outcome.session_id,
            max_age=settings.SESSION_COOKIE_DAYS * 24 * 60 * 60,
            httponly=True,
            samesite="lax",
        )
    return outcome


@router.post("/page-view", response_model=TrackingOutcome)
def track_page_view(
    payload: TrackEventIn,
    response: Response,
    db: Session = Depends(get_db),
    client_ctx: ClientContext = Depends(get_client_context),
    consent_ctx: ConsentContext = Depends(get_consent_context),
):
    return _track(EventType.PAGE_VIEW, payload, response, db, client_ctx, consent_ctx)


@router.post("/form-step", response_model=TrackingOutcome)
def track_form_step(
    payload: TrackEventIn,
    response: Response,
    db: Session = Depends(get_db),
    client_ctx: ClientContext = Depends(get_client_context),
    consent_ctx: ConsentContext = Depends(get_consent_context),
):
    return _track(EventType.FORM_STEP, payload, response, db, client_ctx, consent_ctx)


@router.post("/form-submission", response_model=TrackingOutcome)
def track_form_submission(
    payload: TrackEventIn,
    response: Response,
    db: Session = Depends(get_db),
    client_ctx: ClientContext = Depends(get_client_context),
    consent_ctx: ConsentContext = Depends(get_consent_context),
):
    return _track(EventType.FORM_SUBMISSION, payload, response, db, client_ctx, consent_ctx)
