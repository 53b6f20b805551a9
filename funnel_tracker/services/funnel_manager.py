"""
Funnel/step registry.

Create, update and delete are each a single transaction: on any failure the
session is rolled back and the registry is left as it was before the call.
Updating steps is a full replace, never a diff: every existing step of the
funnel is deleted and the new list is inserted with step_order 1..N.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import asc, desc, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from funnel_tracker.core.exceptions import (
    DuplicateNameError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from funnel_tracker.core.time import now_local
from funnel_tracker.models.funnel import Funnel, FunnelStatus, FunnelStep
from funnel_tracker.models.tracking_event import TrackingEvent
from funnel_tracker.schemas.funnel import FunnelStepIn, FunnelUpdate

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
VALID_STATUSES = {status.value for status in FunnelStatus}
ORDERABLE_COLUMNS = {
    "id": Funnel.id,
    "name": Funnel.name,
    "status": Funnel.status,
    "created_at": Funnel.created_at,
    "updated_at": Funnel.updated_at,
}

_steps_adapter = TypeAdapter(List[FunnelStepIn])

StepsInput = Sequence[Union[BaseModel, Dict[str, Any]]]


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Funnel name is required.", code="invalid_name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Funnel name must be less than {MAX_NAME_LENGTH} characters.",
            code="name_too_long",
        )
    return name


def _validate_steps(steps: StepsInput) -> List[FunnelStepIn]:
    raw = [step.model_dump() if isinstance(step, BaseModel) else step for step in steps]
    try:
        return _steps_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid funnel steps: {e.error_count()} error(s)",
            code="step_validation_failed",
        ) from e


def funnel_name_exists(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    """Names are unique regardless of case."""
    query = db.query(func.count(Funnel.id)).filter(func.lower(Funnel.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Funnel.id != exclude_id)
    return (query.scalar() or 0) > 0


def _create_funnel_steps(db: Session, funnel_id: int, steps: List[FunnelStepIn]) -> None:
    for order, step in enumerate(steps, start=1):
        db.add(FunnelStep(
            funnel_id=funnel_id,
            step_order=order,
            step_type=step.step_type,
            step_name=step.step_name.strip(),
            page_id=getattr(step, "page_id", None),
            form_id=getattr(step, "form_id", None),
        ))


def _replace_funnel_steps(db: Session, funnel: Funnel, steps: List[FunnelStepIn]) -> None:
    # Old steps must be gone before the new ones reuse their step_order values
    db.query(FunnelStep).filter(FunnelStep.funnel_id == funnel.id).delete(synchronize_session=False)
    db.flush()
    db.expire(funnel, ["steps"])
    _create_funnel_steps(db, funnel.id, steps)


def create_funnel(
    db: Session,
    name: str,
    description: Optional[str] = "",
    steps: Optional[StepsInput] = None,
) -> Funnel:
    """Create an active funnel and its steps (step_order = position + 1)."""
    name = _clean_name(name)
    step_inputs = _validate_steps(steps or [])

    if funnel_name_exists(db, name):
        raise DuplicateNameError()

    funnel = Funnel(
        name=name,
        description=(description or "").strip(),
        status=FunnelStatus.ACTIVE.value,
    )
    try:
        db.add(funnel)
        db.flush()
        _create_funnel_steps(db, funnel.id, step_inputs)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("[FUNNELS] Integrity error creating funnel %r: %s", name, e)
        raise DuplicateNameError() from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[FUNNELS] Failed to create funnel %r: %s", name, e)
        raise PersistenceError("Failed to create funnel.") from e

    db.refresh(funnel)
    logger.info("[FUNNELS] Created funnel %s (%r) with %d steps", funnel.id, funnel.name, len(step_inputs))
    return funnel


def get_funnel(db: Session, funnel_id: int, include_steps: bool = True) -> Funnel:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise NotFoundError("Funnel not found.")
    if include_steps:
        # Touch the relationship so callers get steps loaded in step_order
        funnel.steps
    return funnel


def get_funnel_steps_count(db: Session, funnel_id: int) -> int:
    return db.query(func.count(FunnelStep.id)).filter(FunnelStep.funnel_id == funnel_id).scalar() or 0


def update_funnel(db: Session, funnel_id: int, patch: Union[FunnelUpdate, Dict[str, Any]]) -> Funnel:
    """
    Apply a partial update. None values count as "not provided".

    If the patch carries `steps`, every existing step is deleted and replaced
    by the new list inside the same transaction as the funnel row update.
    """
    if isinstance(patch, BaseModel):
        update_data = patch.model_dump(exclude_unset=True)
    else:
        update_data = dict(patch)
    update_data = {key: value for key, value in update_data.items() if value is not None}

    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise NotFoundError("Funnel not found.")

    changes: Dict[str, Any] = {}

    if "name" in update_data:
        name = _clean_name(update_data["name"])
        if funnel_name_exists(db, name, exclude_id=funnel.id):
            raise DuplicateNameError()
        changes["name"] = name

    if "description" in update_data:
        changes["description"] = str(update_data["description"]).strip()

    if "status" in update_data:
        status_value = str(update_data["status"]).strip()
        if status_value not in VALID_STATUSES:
            raise ValidationError("Invalid funnel status.", code="invalid_status")
        changes["status"] = status_value

    step_inputs = None
    if "steps" in update_data:
        step_inputs = _validate_steps(update_data["steps"])

    if not changes and step_inputs is None:
        raise ValidationError("No valid data to update.", code="no_data")

    try:
        for field, value in changes.items():
            setattr(funnel, field, value)
        funnel.updated_at = now_local()
        if step_inputs is not None:
            _replace_funnel_steps(db, funnel, step_inputs)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("[FUNNELS] Integrity error updating funnel %s: %s", funnel_id, e)
        raise DuplicateNameError() from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[FUNNELS] Failed to update funnel %s: %s", funnel_id, e)
        raise PersistenceError("Failed to update funnel.") from e

    db.refresh(funnel)
    logger.info(
        "[FUNNELS] Updated funnel %s fields=%s steps_replaced=%s",
        funnel.id, sorted(changes), step_inputs is not None,
    )
    return funnel


def delete_funnel(db: Session, funnel_id: int) -> None:
    """Delete steps, tracking events and the funnel row as one transaction."""
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise NotFoundError("Funnel not found.")

    try:
        db.query(FunnelStep).filter(FunnelStep.funnel_id == funnel_id).delete(synchronize_session=False)
        deleted_events = db.query(TrackingEvent).filter(
            TrackingEvent.funnel_id == funnel_id
        ).delete(synchronize_session=False)
        db.expire(funnel, ["steps"])
        db.delete(funnel)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[FUNNELS] Failed to delete funnel %s: %s", funnel_id, e)
        raise PersistenceError("Failed to delete funnel.") from e

    logger.info("[FUNNELS] Deleted funnel %s and %d tracking events", funnel_id, deleted_events)


def list_funnels(
    db: Session,
    page: int = 1,
    per_page: int = 20,
    search: str = "",
    order_by: str = "created_at",
    order: str = "DESC",
    status: str = "",
    include_steps: bool = False,
) -> Dict[str, Any]:
    """Paginated funnel listing; search matches name or description, case-insensitively."""
    page = max(1, int(page or 1))
    per_page = max(1, int(per_page or 20))
    column = ORDERABLE_COLUMNS.get(order_by, Funnel.created_at)
    direction = asc if str(order).upper() == "ASC" else desc

    query = db.query(Funnel)
    if status:
        query = query.filter(Funnel.status == status)
    search = (search or "").strip()
    if search:
        query = query.filter(or_(
            Funnel.name.icontains(search, autoescape=True),
            Funnel.description.icontains(search, autoescape=True),
        ))

    total_items = query.count()
    funnels = query.order_by(direction(column), direction(Funnel.id)).offset(
        (page - 1) * per_page
    ).limit(per_page).all()

    if include_steps:
        for funnel in funnels:
            funnel.steps

    return {
        "items": funnels,
        "total_items": total_items,
        "total_pages": math.ceil(total_items / per_page),
        "current_page": page,
        "per_page": per_page,
    }


def _active_steps_query(db: Session):
    return db.query(FunnelStep).join(Funnel, FunnelStep.funnel_id == Funnel.id).filter(
        Funnel.status == FunnelStatus.ACTIVE.value
    )


def find_steps_for_page(db: Session, page_id: int) -> List[FunnelStep]:
    """Every step of an active funnel that references this page."""
    return _active_steps_query(db).filter(FunnelStep.page_id == page_id).order_by(
        asc(FunnelStep.funnel_id), asc(FunnelStep.step_order)
    ).all()


def find_steps_for_form(db: Session, form_id: int) -> List[FunnelStep]:
    """Every step of an active funnel that references this form."""
    return _active_steps_query(db).filter(FunnelStep.form_id == form_id).order_by(
        asc(FunnelStep.funnel_id), asc(FunnelStep.step_order)
    ).all()
