"""
Data retention: prune old tracking events and expired consent records.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import PersistenceError
from funnel_tracker.core.time import now_local
from funnel_tracker.models.consent import ConsentRecord
from funnel_tracker.models.tracking_event import TrackingEvent

logger = logging.getLogger(__name__)


def cleanup_old_data(db: Session, days: Optional[int] = None) -> int:
    """
    Delete events older than the retention window and consent records past
    their expiry. Returns the number of rows deleted; a second run deletes
    nothing new.
    """
    if days is None:
        days = settings.DATA_RETENTION_DAYS
    now = now_local()
    cutoff = now - timedelta(days=days)

    try:
        events_deleted = db.query(TrackingEvent).filter(
            TrackingEvent.created_at < cutoff
        ).delete(synchronize_session=False)
        consents_deleted = db.query(ConsentRecord).filter(
            ConsentRecord.expires_at < now
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[RETENTION] Cleanup failed: %s", e)
        raise PersistenceError("Failed to clean up old data.") from e

    total = events_deleted + consents_deleted
    logger.info(
        "[RETENTION] Deleted %d events older than %s and %d expired consent records",
        events_deleted, cutoff, consents_deleted,
    )
    return total
