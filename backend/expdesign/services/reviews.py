"""Review and field-suggestion lifecycle for published designs."""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from .. import audit, ledger, models, notify, schemas
from ..logs import get_logger
from . import design_store, field_refs, lifecycle
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StaleSuggestionError,
    ValidationError,
)

# purpose: create reviews, track per-field suggestions and apply their status transitions
# inputs: published designs, reviewer payloads, author decisions on suggestions
# outputs: DesignReview/FieldSuggestion rows, draft mutations, contributor credit
# status: active
# depends_on: expdesign.services.design_store, expdesign.services.field_refs

logger = get_logger(__name__)

READINESS_SIGNALS = ("ready", "almost_ready", "needs_revision")
SUGGESTION_TYPES = ("suggestion", "issue", "question", "safety_concern")
CURRENT_REVIEW_STATUSES = ("active", "resolved")


def submit_review(
    db: Session,
    design_id: UUID | str,
    reviewer_id: str,
    body: schemas.ReviewCreate | Mapping[str, Any],
) -> models.DesignReview:
    """Create or replace ``reviewer_id``'s review of the current published version.

    The whole submission is validated before anything is written, so one bad
    suggestion rejects the entire review.
    """

    if not isinstance(body, schemas.ReviewCreate):
        body = schemas.ReviewCreate.model_validate(body)

    design = design_store.load_design(db, design_id)
    if design.status != "published":
        if design.status == "locked":
            raise ValidationError("reviews are closed: the design is locked")
        raise ValidationError("only published designs can be reviewed")
    if design.is_author(reviewer_id):
        raise AuthorizationError("authors cannot review their own design")

    general_comment = _clean(body.general_comment)
    if body.endorsement and not general_comment:
        raise ValidationError("a general comment is required when endorsing")
    if not general_comment and not body.endorsement and not body.suggestions:
        raise ValidationError("a review needs a comment, an endorsement or at least one suggestion")
    if body.readiness_signal is not None and body.readiness_signal not in READINESS_SIGNALS:
        raise ValidationError(f"readinessSignal must be one of: {', '.join(READINESS_SIGNALS)}")

    snapshot = design.versions[-1]
    prepared = [
        _prepare_suggestion(snapshot.data, position, item)
        for position, item in enumerate(body.suggestions, start=1)
    ]

    review = _current_review(db, design.id, reviewer_id)
    was_endorsed = bool(review and review.endorsement and review.version_number == snapshot.version_number)
    created = False
    if review is not None and review.version_number == snapshot.version_number:
        _supersede_open(review.suggestions)
        start = len(review.suggestions)
    else:
        if review is not None:
            _supersede_open(review.suggestions)
            review.status = "superseded"
        review = models.DesignReview(
            design_id=design.id,
            version_number=snapshot.version_number,
            reviewer_id=reviewer_id,
        )
        db.add(review)
        design.review_count = design.review_count + 1
        created = True
        start = 0

    review.general_comment = general_comment
    review.readiness_signal = body.readiness_signal
    review.endorsement = body.endorsement
    review.status = "active"
    for offset, values in enumerate(prepared):
        review.suggestions.append(
            models.FieldSuggestion(
                design_id=design.id,
                version_number=snapshot.version_number,
                position=start + offset,
                status="open",
                **values,
            )
        )
    db.flush()

    if created:
        ledger.record_event(
            db,
            reviewer_id,
            ledger.DESIGN_REVIEW_SUBMITTED,
            design_id=design.id,
            design_version=snapshot.version_number,
            review_id=review.id,
        )
    if review.endorsement and not was_endorsed:
        ledger.record_event(
            db,
            reviewer_id,
            ledger.DESIGN_ENDORSED,
            design_id=design.id,
            design_version=snapshot.version_number,
            review_id=review.id,
        )
    moot = supersede_moot_suggestions(db, design)
    notify.notify_users(
        db,
        design.author_ids,
        f"New review on '{design.title}' (v{snapshot.version_number})",
        category="review",
        title="Design reviewed",
        actor_id=reviewer_id,
        design_id=design.id,
        meta={"review_id": str(review.id)},
    )
    audit.log_action(
        db,
        reviewer_id,
        "review.submit" if created else "review.update",
        "design_review",
        review.id,
        {"design_id": str(design.id), "suggestions": len(prepared), "superseded": moot},
    )
    logger.info(
        "review submitted",
        extra={"context": {"design_id": str(design.id), "review_id": str(review.id), "created": created}},
    )
    return review


def accept_suggestion(
    db: Session,
    review_id: UUID | str,
    suggestion_id: UUID | str,
    acting_author_id: str,
) -> tuple[models.FieldSuggestion, bool]:
    """Apply a suggestion to the design's draft and mark it accepted.

    Returns the suggestion and whether this acceptance started a new draft.
    The suggestion is claimed with a conditional update in the same
    transaction as the draft mutation, so a failed edit rolls both back.
    """

    review, suggestion = _load_suggestion(db, review_id, suggestion_id)
    design = design_store.load_design(db, review.design_id)
    design_store.require_author(design, acting_author_id, "accept suggestions on")
    _require_open(suggestion, "accepted")

    draft_created = not lifecycle.has_unpublished_draft(lifecycle.state_of(design))
    ref = _ref_of(suggestion, design.custom_fields)
    patch = field_refs.build_patch(
        lifecycle.content_of(design),
        ref,
        suggestion.proposed_text,
        remove_material_ids=suggestion.remove_material_ids,
        bound_value=suggestion.bound_value,
    )
    _claim_open(db, suggestion, "accepted")
    design_store.update_draft(db, design.id, acting_author_id, patch)

    _credit_reviewer(db, design, review.reviewer_id, suggestion)
    _refresh_review_status(review)
    db.flush()

    ledger.record_event(
        db,
        review.reviewer_id,
        ledger.REVIEW_SUGGESTION_ACCEPTED_ON_DESIGN,
        design_id=design.id,
        design_version=suggestion.version_number,
        review_id=review.id,
        suggestion_id=suggestion.id,
    )
    if suggestion.suggestion_type == "safety_concern":
        ledger.record_event(
            db,
            review.reviewer_id,
            ledger.SAFETY_SUGGESTION_ACCEPTED,
            design_id=design.id,
            design_version=suggestion.version_number,
            review_id=review.id,
            suggestion_id=suggestion.id,
        )
    notify.notify_users(
        db,
        [review.reviewer_id],
        f"Your suggestion on {suggestion.field_ref or suggestion.new_field_name} was accepted",
        category="suggestion",
        title="Suggestion accepted",
        actor_id=acting_author_id,
        design_id=design.id,
        meta={"review_id": str(review.id), "suggestion_id": str(suggestion.id)},
    )
    audit.log_action(
        db,
        acting_author_id,
        "suggestion.accept",
        "field_suggestion",
        suggestion.id,
        {"design_id": str(design.id), "draft_created": draft_created},
    )
    logger.info(
        "suggestion accepted",
        extra={"context": {"design_id": str(design.id), "suggestion_id": str(suggestion.id)}},
    )
    return suggestion, draft_created


def close_suggestion(
    db: Session,
    review_id: UUID | str,
    suggestion_id: UUID | str,
    acting_author_id: str,
) -> models.FieldSuggestion:
    review, suggestion = _load_suggestion(db, review_id, suggestion_id)
    design = design_store.load_design(db, review.design_id)
    design_store.require_author(design, acting_author_id, "close suggestions on")
    _require_open(suggestion, "closed")

    _claim_open(db, suggestion, "closed")
    _refresh_review_status(review)
    db.flush()
    notify.notify_users(
        db,
        [review.reviewer_id],
        f"Your suggestion on {suggestion.field_ref or suggestion.new_field_name} was closed",
        category="suggestion",
        title="Suggestion closed",
        actor_id=acting_author_id,
        design_id=design.id,
        meta={"review_id": str(review.id), "suggestion_id": str(suggestion.id)},
    )
    audit.log_action(db, acting_author_id, "suggestion.close", "field_suggestion", suggestion.id)
    return suggestion


def reply_to_suggestion(
    db: Session,
    review_id: UUID | str,
    suggestion_id: UUID | str,
    acting_author_id: str,
    text: str | None,
) -> models.FieldSuggestion:
    """Set the owner's reply on a suggestion; a reply can be written once."""

    review, suggestion = _load_suggestion(db, review_id, suggestion_id)
    design = design_store.load_design(db, review.design_id)
    design_store.require_author(design, acting_author_id, "reply to suggestions on")
    reply = _clean(text)
    if not reply:
        raise ValidationError("reply text is required")
    if suggestion.owner_reply is not None:
        raise ConflictError("this suggestion already has a reply")

    result = db.execute(
        sa.update(models.FieldSuggestion)
        .where(
            models.FieldSuggestion.id == suggestion.id,
            models.FieldSuggestion.owner_reply.is_(None),
        )
        .values(owner_reply=reply)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("this suggestion already has a reply")
    set_committed_value(suggestion, "owner_reply", reply)
    notify.notify_users(
        db,
        [review.reviewer_id],
        f"An author replied to your suggestion on {suggestion.field_ref or suggestion.new_field_name}",
        category="suggestion",
        title="Reply to your suggestion",
        actor_id=acting_author_id,
        design_id=design.id,
        meta={"review_id": str(review.id), "suggestion_id": str(suggestion.id)},
    )
    audit.log_action(db, acting_author_id, "suggestion.reply", "field_suggestion", suggestion.id)
    return suggestion


def lock_design_reviews(db: Session, design_id: UUID) -> tuple[int, int]:
    """Lock every open suggestion and active review of a design in two statements."""

    suggestions = db.execute(
        sa.update(models.FieldSuggestion)
        .where(
            models.FieldSuggestion.design_id == design_id,
            models.FieldSuggestion.status == "open",
        )
        .values(status="locked")
    )
    reviews = db.execute(
        sa.update(models.DesignReview)
        .where(
            models.DesignReview.design_id == design_id,
            models.DesignReview.status == "active",
        )
        .values(status="locked")
    )
    logger.info(
        "design reviews locked",
        extra={
            "context": {
                "design_id": str(design_id),
                "suggestions": suggestions.rowcount,
                "reviews": reviews.rowcount,
            }
        },
    )
    return suggestions.rowcount, reviews.rowcount


def endorse_design(
    db: Session,
    design_id: UUID | str,
    reviewer_id: str,
    comment: str | None,
) -> models.DesignReview:
    """Endorse the current published version, keeping any existing review's suggestions."""

    comment = _clean(comment)
    if not comment:
        raise ValidationError("a comment is required when endorsing")
    design = design_store.load_design(db, design_id)
    review = _current_review(db, design.id, reviewer_id)
    if review is None or review.version_number != design.published_version:
        return submit_review(
            db,
            design.id,
            reviewer_id,
            schemas.ReviewCreate(general_comment=comment, endorsement=True),
        )
    if review.endorsement:
        return review
    if design.is_author(reviewer_id):
        raise AuthorizationError("authors cannot endorse their own design")
    if design.status != "published":
        raise ValidationError("only published designs can be endorsed")

    review.endorsement = True
    review.general_comment = review.general_comment or comment
    db.flush()
    ledger.record_event(
        db,
        reviewer_id,
        ledger.DESIGN_ENDORSED,
        design_id=design.id,
        design_version=review.version_number,
        review_id=review.id,
    )
    notify.notify_users(
        db,
        design.author_ids,
        f"'{design.title}' received an endorsement",
        category="review",
        title="Design endorsed",
        actor_id=reviewer_id,
        design_id=design.id,
        meta={"review_id": str(review.id)},
    )
    audit.log_action(db, reviewer_id, "review.endorse", "design_review", review.id)
    return review


def list_reviews(
    db: Session,
    design_id: UUID | str,
    viewer_id: str | None = None,
    version: int | None = None,
    include_superseded: bool = False,
) -> list[models.DesignReview]:
    design = design_store.load_visible(db, design_id, viewer_id)
    query = db.query(models.DesignReview).filter(models.DesignReview.design_id == design.id)
    if version is not None:
        query = query.filter(models.DesignReview.version_number == version)
    if not include_superseded:
        query = query.filter(models.DesignReview.status != "superseded")
    return query.order_by(models.DesignReview.created_at.asc()).all()


def get_review(
    db: Session,
    design_id: UUID | str,
    review_id: UUID | str,
    viewer_id: str | None = None,
) -> models.DesignReview:
    design = design_store.load_visible(db, design_id, viewer_id)
    review = db.get(models.DesignReview, _coerce_id(review_id, "review"))
    if not review or review.design_id != design.id:
        raise NotFoundError(f"review {review_id} not found")
    return review


def list_endorsements(
    db: Session,
    design_id: UUID | str,
    viewer_id: str | None = None,
) -> list[schemas.EndorsementOut]:
    design = design_store.load_visible(db, design_id, viewer_id)
    reviews = (
        db.query(models.DesignReview)
        .filter(
            models.DesignReview.design_id == design.id,
            models.DesignReview.endorsement.is_(True),
            models.DesignReview.status != "superseded",
        )
        .order_by(models.DesignReview.created_at.asc())
        .all()
    )
    return [
        schemas.EndorsementOut(
            review_id=review.id,
            reviewer_id=review.reviewer_id,
            comment=review.general_comment,
            version_number=review.version_number,
            created_at=review.created_at,
        )
        for review in reviews
    ]


def review_summary(
    db: Session,
    design_id: UUID | str,
    viewer_id: str | None = None,
) -> schemas.ReviewSummaryOut:
    design = design_store.load_visible(db, design_id, viewer_id)
    reviews = (
        db.query(models.DesignReview)
        .filter(
            models.DesignReview.design_id == design.id,
            models.DesignReview.version_number == design.published_version,
            models.DesignReview.status != "superseded",
        )
        .all()
    )
    contributors = (
        db.query(models.DesignContributor)
        .filter(models.DesignContributor.design_id == design.id)
        .order_by(models.DesignContributor.user_id.asc())
        .all()
    )
    is_locked = design.status == "locked" or design.execution_count > 0
    return schemas.ReviewSummaryOut(
        review_count=sum(1 for r in reviews if not r.endorsement),
        endorsement_count=sum(1 for r in reviews if r.endorsement),
        contributing_reviewers=[
            schemas.ContributingReviewerOut.model_validate(c) for c in contributors
        ],
        version_number=design.published_version,
        is_locked=is_locked,
        reviewable=(
            design.status == "published"
            and not is_locked
            and viewer_id is not None
            and not design.is_author(viewer_id)
        ),
        user_has_reviewed=(
            None if viewer_id is None else any(r.reviewer_id == viewer_id for r in reviews)
        ),
    )


def supersede_moot_suggestions(db: Session, design: models.Design) -> int:
    """Supersede open suggestions on older versions whose target has since changed."""

    current = design.versions[-1]
    current_data = current.data
    stale = (
        db.query(models.FieldSuggestion)
        .filter(
            models.FieldSuggestion.design_id == design.id,
            models.FieldSuggestion.status == "open",
            models.FieldSuggestion.version_number < current.version_number,
        )
        .all()
    )
    touched_reviews = {}
    count = 0
    for suggestion in stale:
        if suggestion.new_field_name or suggestion.field_ref is None:
            continue
        try:
            ref = _ref_of(suggestion, current_data.get("custom_fields"))
            if ref.kind is field_refs.RefKind.NEW_LIST_ITEM:
                continue
            moved = field_refs.resolve_current_value(current_data, ref) != suggestion.bound_value
        except StaleSuggestionError:
            moved = True
        if moved:
            suggestion.status = "superseded"
            touched_reviews[suggestion.review_id] = suggestion.review
            count += 1
    for review in touched_reviews.values():
        _refresh_review_status(review)
    if count:
        db.flush()
    return count


def _prepare_suggestion(
    snapshot_data: Mapping[str, Any],
    position: int,
    item: schemas.SuggestionCreate,
) -> dict[str, Any]:
    label = f"suggestion {position}"
    field_ref_raw = _clean(item.field_ref)
    new_field_name = _clean(item.new_field_name)
    if bool(field_ref_raw) == bool(new_field_name):
        raise ValidationError(f"{label}: exactly one of fieldRef or newFieldName is required")
    proposed_text = _clean(item.proposed_text)
    comment = _clean(item.comment)
    if proposed_text is None and comment is None:
        raise ValidationError(f"{label}: proposedText or comment is required")
    if item.suggestion_type is not None and item.suggestion_type not in SUGGESTION_TYPES:
        raise ValidationError(f"{label}: suggestionType must be one of: {', '.join(SUGGESTION_TYPES)}")

    custom_fields = snapshot_data.get("custom_fields") or {}
    try:
        if field_ref_raw:
            ref = field_refs.parse_field_ref(field_ref_raw, custom_fields)
        else:
            ref = field_refs.new_field_ref(new_field_name)
    except ValidationError as exc:
        raise ValidationError(f"{label}: {exc}") from exc
    if ref.kind is field_refs.RefKind.NEW_FIELD and (
        ref.field in custom_fields or ref.field in models.CONTENT_FIELDS
    ):
        raise ValidationError(f"{label}: field '{ref.field}' already exists; use fieldRef")
    if item.remove_material_ids and ref.field != field_refs.MATERIALS:
        raise ValidationError(f"{label}: removeMaterialIds only applies to materials")

    try:
        bound_value = field_refs.resolve_current_value(snapshot_data, ref)
    except field_refs.OutOfRangeError as exc:
        raise ValidationError(f"{label}: {exc}") from exc

    return {
        "field_ref": str(ref) if field_ref_raw else None,
        "new_field_name": ref.field if new_field_name else None,
        "proposed_text": proposed_text,
        "comment": comment,
        "suggestion_type": item.suggestion_type,
        "remove_material_ids": list(item.remove_material_ids),
        "bound_value": bound_value,
    }


def _ref_of(
    suggestion: models.FieldSuggestion,
    custom_fields: Mapping[str, Any] | None,
) -> field_refs.FieldRef:
    if suggestion.new_field_name:
        return field_refs.new_field_ref(suggestion.new_field_name)
    try:
        return field_refs.parse_field_ref(suggestion.field_ref, custom_fields)
    except ValidationError as exc:
        raise StaleSuggestionError(
            f"{suggestion.field_ref} no longer names a field of this design; re-review required"
        ) from exc


def _current_review(db: Session, design_id: UUID, reviewer_id: str) -> models.DesignReview | None:
    return (
        db.query(models.DesignReview)
        .filter(
            models.DesignReview.design_id == design_id,
            models.DesignReview.reviewer_id == reviewer_id,
            models.DesignReview.status.in_(CURRENT_REVIEW_STATUSES),
        )
        .order_by(models.DesignReview.created_at.desc())
        .first()
    )


def _load_suggestion(
    db: Session,
    review_id: UUID | str,
    suggestion_id: UUID | str,
) -> tuple[models.DesignReview, models.FieldSuggestion]:
    review = db.get(models.DesignReview, _coerce_id(review_id, "review"), populate_existing=True)
    if not review:
        raise NotFoundError(f"review {review_id} not found")
    suggestion = db.get(
        models.FieldSuggestion,
        _coerce_id(suggestion_id, "suggestion"),
        populate_existing=True,
    )
    if not suggestion or suggestion.review_id != review.id:
        raise NotFoundError(f"suggestion {suggestion_id} not found")
    return review, suggestion


def _require_open(suggestion: models.FieldSuggestion, target: str) -> None:
    if suggestion.status != "open":
        raise ValidationError(
            f"suggestion is {suggestion.status}; only open suggestions can be {target}"
        )


def _claim_open(db: Session, suggestion: models.FieldSuggestion, target: str) -> None:
    """Move an open suggestion to ``target`` only if no one else got there first."""

    result = db.execute(
        sa.update(models.FieldSuggestion)
        .where(
            models.FieldSuggestion.id == suggestion.id,
            models.FieldSuggestion.status == "open",
        )
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"suggestion {suggestion.id} was already decided; reload and retry")
    set_committed_value(suggestion, "status", target)


def _supersede_open(suggestions: Iterable[models.FieldSuggestion]) -> None:
    for suggestion in suggestions:
        if suggestion.status == "open":
            suggestion.status = "superseded"


def _refresh_review_status(review: models.DesignReview) -> None:
    if review.status != "active" or not review.suggestions:
        return
    if all(s.status != "open" for s in review.suggestions):
        review.status = "resolved"


def _credit_reviewer(
    db: Session,
    design: models.Design,
    reviewer_id: str,
    suggestion: models.FieldSuggestion,
) -> None:
    contributor = db.get(models.DesignContributor, (design.id, reviewer_id))
    if contributor is None:
        contributor = models.DesignContributor(
            design_id=design.id,
            user_id=reviewer_id,
            version_number=suggestion.version_number,
            accepted_suggestion_ids=[],
            credited_suggestion_ids=[],
            endorsed_and_executed=False,
        )
        db.add(contributor)
    # reassign so the JSON column is flagged dirty
    contributor.accepted_suggestion_ids = list(contributor.accepted_suggestion_ids or []) + [str(suggestion.id)]
    contributor.version_number = suggestion.version_number


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _coerce_id(value: UUID | str, kind: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFoundError(f"{kind} {value} not found") from exc
