"""Recording design executions, which freeze methodology on first use."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, models, notify
from ..logs import get_logger
from . import design_store, lifecycle, reviews
from .errors import AuthorizationError, NotFoundError, ValidationError

logger = get_logger(__name__)


def record_execution(db: Session, design_id: UUID | str, experimenter_id: str) -> models.DesignExecution:
    design = design_store.load_design(db, design_id)
    state = lifecycle.state_of(design)
    if not lifecycle.is_public(state):
        raise ValidationError("only published designs can be executed")
    if isinstance(state, lifecycle.PublishedWithDraft):
        raise ValidationError("publish or discard pending draft changes before executing this design")

    execution = models.DesignExecution(
        design_id=design.id,
        design_version=design.published_version,
        experimenter_id=experimenter_id,
        status="in_progress",
    )
    db.add(execution)
    first = design.execution_count == 0
    design.execution_count = design.execution_count + 1
    if first:
        design.status = "locked"
    db.flush()
    if first:
        reviews.lock_design_reviews(db, design.id)

    endorsed = (
        db.query(models.DesignReview)
        .filter(
            models.DesignReview.design_id == design.id,
            models.DesignReview.reviewer_id == experimenter_id,
            models.DesignReview.endorsement.is_(True),
            models.DesignReview.status != "superseded",
        )
        .first()
    )
    if endorsed is not None:
        contributor = db.get(models.DesignContributor, (design.id, experimenter_id))
        if contributor is None:
            contributor = models.DesignContributor(
                design_id=design.id,
                user_id=experimenter_id,
                version_number=endorsed.version_number,
                accepted_suggestion_ids=[],
                credited_suggestion_ids=[],
            )
            db.add(contributor)
        contributor.endorsed_and_executed = True

    db.flush()
    notify.notify_users(
        db,
        design.author_ids,
        f"'{design.title}' was executed (v{design.published_version})",
        category="execution",
        title="Design executed",
        actor_id=experimenter_id,
        design_id=design.id,
    )
    audit.log_action(
        db,
        experimenter_id,
        "design.execute",
        "design",
        design.id,
        {"design_version": design.published_version, "locked": first},
    )
    if first:
        logger.info("design locked by first execution", extra={"context": {"design_id": str(design.id)}})
    return execution


def cancel_execution(
    db: Session,
    design_id: UUID | str,
    execution_id: UUID | str,
    experimenter_id: str,
) -> models.DesignExecution:
    """Cancel an in-progress execution and unlock the design when none remain.

    Suggestions and reviews that were locked stay locked; reopening a design
    only lets new reviews in.
    """

    design = design_store.load_design(db, design_id)
    execution = db.get(models.DesignExecution, _coerce_id(execution_id), populate_existing=True)
    if execution is None or execution.design_id != design.id:
        raise NotFoundError(f"execution {execution_id} not found")
    if execution.experimenter_id != experimenter_id:
        raise AuthorizationError("only the experimenter can cancel this execution")
    if execution.status != "in_progress":
        raise ValidationError("only in-progress executions can be cancelled")

    execution.status = "cancelled"
    design.execution_count = max(design.execution_count - 1, 0)
    unlocked = design.execution_count == 0 and design.status == "locked"
    if unlocked:
        design.status = "published"
    db.flush()
    audit.log_action(
        db,
        experimenter_id,
        "design.execution_cancel",
        "design",
        design.id,
        {"execution_id": str(execution.id), "unlocked": unlocked},
    )
    if unlocked:
        logger.info("design unlocked after last execution cancelled", extra={"context": {"design_id": str(design.id)}})
    return execution


def _coerce_id(value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFoundError(f"execution {value} not found") from exc
