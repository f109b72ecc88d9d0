"""Contribution scoring ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from . import models

# purpose: credit authors and reviewers for publishing, reviewing and accepted suggestions
# inputs: SQLAlchemy session, beneficiary user ids, event type, design/review context
# outputs: ContributionLedgerEntry rows staged in the caller's transaction
# status: pilot

DESIGN_PUBLISHED = "DESIGN_PUBLISHED"
DESIGN_ENDORSED = "DESIGN_ENDORSED"
DESIGN_REFERENCED_BY_DESIGN = "DESIGN_REFERENCED_BY_DESIGN"
DESIGN_DERIVED_CREATED = "DESIGN_DERIVED_CREATED"
DESIGN_REVIEW_SUBMITTED = "DESIGN_REVIEW_SUBMITTED"
REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN = "REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN"
DESIGN_VERSION_PUBLISHED_WITH_ACCEPTED_SUGGESTION = "DESIGN_VERSION_PUBLISHED_WITH_ACCEPTED_SUGGESTION"
SAFETY_SUGGESTION_ACCEPTED = "SAFETY_SUGGESTION_ACCEPTED"

EVENT_TYPES = frozenset(
    {
        DESIGN_PUBLISHED,
        DESIGN_ENDORSED,
        DESIGN_REFERENCED_BY_DESIGN,
        DESIGN_DERIVED_CREATED,
        DESIGN_REVIEW_SUBMITTED,
        REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN,
        DESIGN_VERSION_PUBLISHED_WITH_ACCEPTED_SUGGESTION,
        SAFETY_SUGGESTION_ACCEPTED,
    }
)


def record_event(
    db: Session,
    user_id: str,
    event_type: str,
    **context: Any,
) -> models.ContributionLedgerEntry:
    """Stage a single ledger entry for one beneficiary."""

    if event_type not in EVENT_TYPES:
        raise ValueError(f"unknown ledger event type '{event_type}'")
    entry = models.ContributionLedgerEntry(
        user_id=user_id,
        event_type=event_type,
        design_id=_as_uuid(context.get("design_id")),
        design_version=context.get("design_version"),
        review_id=_as_uuid(context.get("review_id")),
        suggestion_id=_as_uuid(context.get("suggestion_id")),
        referencing_design_id=_as_uuid(context.get("referencing_design_id")),
        fork_design_id=_as_uuid(context.get("fork_design_id")),
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


def record_events(
    db: Session,
    user_ids: Iterable[str],
    event_type: str,
    **context: Any,
) -> list[models.ContributionLedgerEntry]:
    """Stage the same event for several beneficiaries, one row each."""

    return [record_event(db, user_id, event_type, **context) for user_id in user_ids]


def entries_for_design(db: Session, design_id: UUID) -> list[models.ContributionLedgerEntry]:
    return (
        db.query(models.ContributionLedgerEntry)
        .filter(models.ContributionLedgerEntry.design_id == design_id)
        .order_by(models.ContributionLedgerEntry.created_at.asc())
        .all()
    )


def _as_uuid(value: Any) -> UUID | None:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    return UUID(str(value))
