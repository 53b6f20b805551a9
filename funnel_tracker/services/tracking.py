"""
Event store: turns one client-side tracking call into tracking_events rows.

A call is checked in this order: tracking switched off, analytics consent,
payload validation, step lookup. One row is appended per matching funnel
step (a page or form may belong to several active funnels). Storage errors
are logged and reported as a `failed` outcome; visitors never see them.

There is no server-side idempotency: repeated form steps are suppressed by
the client per browser session only.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import now_local
from funnel_tracker.models.funnel import FunnelStep
from funnel_tracker.models.tracking_event import EventType, TrackingEvent
from funnel_tracker.schemas.tracking import TrackEventIn, TrackingOutcome, TrackingStatus
from funnel_tracker.services import funnel_manager
from funnel_tracker.services.consent import ConsentContext, has_consent
from funnel_tracker.services.session_resolver import (
    ClientContext,
    get_client_ip,
    get_user_agent,
    resolve_session,
)
from funnel_tracker.services.utm import sanitize_utm_parameters, utm_dict

logger = logging.getLogger(__name__)


def validate_event(event_type: EventType, payload: TrackEventIn) -> None:
    if event_type == EventType.PAGE_VIEW:
        if not payload.page_id or payload.page_id <= 0:
            raise ValidationError("Invalid page ID.", code="invalid_page_id")
    elif event_type == EventType.FORM_STEP:
        if not payload.form_id or payload.form_id <= 0 or not payload.step_index or payload.step_index <= 0:
            raise ValidationError("Invalid form or step data.", code="invalid_form_step")
    elif event_type == EventType.FORM_SUBMISSION:
        if not payload.form_id or payload.form_id <= 0:
            raise ValidationError("Invalid form ID.", code="invalid_form_id")
    else:
        raise ValidationError("Unknown event type.", code="invalid_event_type")


def _matching_steps(db: Session, event_type: EventType, payload: TrackEventIn) -> List[FunnelStep]:
    if event_type == EventType.PAGE_VIEW:
        return funnel_manager.find_steps_for_page(db, payload.page_id)
    return funnel_manager.find_steps_for_form(db, payload.form_id)


def record_event(
    db: Session,
    event_type: EventType,
    payload: TrackEventIn,
    client_ctx: ClientContext,
    consent_ctx: ConsentContext,
) -> TrackingOutcome:
    """
    Record one tracking call.

    Returns an outcome for every non-error path (disabled, consent_required,
    skipped, tracked, failed). Raises ValidationError for malformed payloads.
    """
    event_type = EventType(event_type)

    if not settings.UTM_TRACKING_ENABLED:
        return TrackingOutcome(status=TrackingStatus.DISABLED, message="Tracking is disabled.")

    if not has_consent(consent_ctx, "analytics"):
        return TrackingOutcome(status=TrackingStatus.CONSENT_REQUIRED, message="Tracking consent required.")

    validate_event(event_type, payload)

    session = resolve_session(client_ctx)
    steps = _matching_steps(db, event_type, payload)
    if not steps:
        logger.debug(
            "[TRACKING] No active funnel step for %s page_id=%s form_id=%s",
            event_type.value, payload.page_id, payload.form_id,
        )
        return TrackingOutcome(
            status=TrackingStatus.SKIPPED,
            session_id=session.session_id,
            message="no_matching_step",
        )

    utm = utm_dict(sanitize_utm_parameters(payload.model_dump()))
    ip_address = get_client_ip(client_ctx)
    user_agent = get_user_agent(client_ctx)
    form_step_index: Optional[int] = payload.step_index if event_type == EventType.FORM_STEP else None
    created_at = now_local()

    events = []
    try:
        for step in steps:
            event = TrackingEvent(
                funnel_id=step.funnel_id,
                step_id=step.id,
                session_id=session.session_id,
                event_type=event_type.value,
                page_id=payload.page_id if payload.page_id and payload.page_id > 0 else None,
                form_id=payload.form_id if event_type != EventType.PAGE_VIEW else None,
                form_step_index=form_step_index,
                user_agent=user_agent,
                ip_address=ip_address,
                created_at=created_at,
                **utm,
            )
            db.add(event)
            events.append(event)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[TRACKING] Failed to store %s event for session %s: %s", event_type.value, session.session_id, e)
        return TrackingOutcome(
            status=TrackingStatus.FAILED,
            session_id=session.session_id,
            funnel_steps_found=len(steps),
            message="Failed to track event.",
        )

    event_ids = [event.id for event in events]
    logger.info(
        "[TRACKING] %s session=%s steps=%d event_ids=%s",
        event_type.value, session.session_id, len(steps), event_ids,
    )
    return TrackingOutcome(
        status=TrackingStatus.TRACKED,
        event_ids=event_ids,
        session_id=session.session_id,
        funnel_steps_found=len(steps),
        message="Event tracked successfully.",
    )
