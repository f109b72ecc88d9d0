"""Design document store: current-state fields, authorship and the methodology lock."""

from __future__ import annotations

import uuid
from typing import Any, Mapping
from uuid import UUID

import pydantic
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..logs import get_logger
from . import lifecycle
from .errors import (
    AuthorizationError,
    InvariantViolation,
    LockedFieldError,
    NotFoundError,
    ValidationError,
)

# purpose: own a design's mutable draft state and version bookkeeping
# status: active
# depends_on: expdesign.models.Design, expdesign.models.DesignAuthor

logger = get_logger(__name__)

DIFFICULTY_LEVELS = (
    "Pre-K",
    "Elementary",
    "Middle School",
    "High School",
    "Undergraduate",
    "Graduate",
    "Professional",
)
MAX_TITLE_LENGTH = 200
MAX_DISCIPLINE_TAGS = 5
_LISTING_PAGE_SIZE = 50

_ITEM_SCHEMAS: dict[str, type[pydantic.BaseModel]] = {
    "steps": schemas.DesignStep,
    "materials": schemas.DesignMaterial,
    "research_questions": schemas.ResearchQuestion,
    "independent_variables": schemas.Variable,
    "dependent_variables": schemas.Variable,
    "controlled_variables": schemas.Variable,
    "references": schemas.DesignReference,
    "design_files": schemas.DesignFile,
}
_STRING_LISTS = ("discipline_tags", "statistical_methods", "reference_design_ids")
_EDITABLE_FIELDS = frozenset(models.CONTENT_FIELDS) | {"pending_changelog"}


def load_design(db: Session, design_id: UUID | str) -> models.Design:
    """Load a design, always re-reading the row so lock state is never stale."""

    design = db.get(models.Design, _coerce_id(design_id), populate_existing=True)
    if not design:
        raise NotFoundError(f"design {design_id} not found")
    return design


def require_author(design: models.Design, user_id: str, action: str = "edit") -> None:
    if not design.is_author(user_id):
        raise AuthorizationError(f"only authors can {action} this design")


def normalize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Validate field shapes and return JSON-ready values."""

    unknown = sorted(set(fields) - _EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"unknown design field(s): {', '.join(unknown)}")

    normalized: dict[str, Any] = {}
    for name, value in fields.items():
        if name in _ITEM_SCHEMAS:
            normalized[name] = _normalize_items(name, value)
        elif name in _STRING_LISTS:
            if value is None:
                value = []
            if not isinstance(value, (list, tuple)):
                raise ValidationError(f"{name} must be a list")
            normalized[name] = [str(v).strip() for v in value if str(v).strip()]
        elif name == "custom_fields":
            normalized[name] = dict(value or {})
        elif isinstance(value, str) and name != "pending_changelog":
            normalized[name] = value.strip() or None
        else:
            normalized[name] = value

    if "research_questions" in normalized:
        for question in normalized["research_questions"]:
            question.setdefault("id", str(uuid.uuid4()))
    if "steps" in normalized:
        for position, step in enumerate(normalized["steps"], start=1):
            step.setdefault("step_number", position)
    return normalized


def validate_field_values(fields: Mapping[str, Any]) -> None:
    """Check value constraints for whichever fields are present."""

    if "title" in fields:
        title = fields["title"]
        if not title:
            raise ValidationError("title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"title must be {MAX_TITLE_LENGTH} characters or fewer")
    if "summary" in fields and not fields["summary"]:
        raise ValidationError("summary is required")
    if len(fields.get("discipline_tags") or []) > MAX_DISCIPLINE_TAGS:
        raise ValidationError(f"discipline_tags cannot exceed {MAX_DISCIPLINE_TAGS}")
    level = fields.get("difficulty_level")
    if level is not None and level not in DIFFICULTY_LEVELS:
        raise ValidationError(f"difficulty_level must be one of: {', '.join(DIFFICULTY_LEVELS)}")


def validate_required(fields: Mapping[str, Any]) -> None:
    """Check the fields every design needs before it can exist or be published."""

    if not fields.get("title"):
        raise ValidationError("title is required")
    if not fields.get("summary"):
        raise ValidationError("summary is required")
    if not fields.get("discipline_tags"):
        raise ValidationError("at least one discipline_tag is required")
    if not fields.get("materials"):
        raise ValidationError("at least one material is required")
    steps = fields.get("steps") or []
    if not any((step.get("instruction") or "").strip() for step in steps):
        raise ValidationError("at least one non-empty step is required")
    questions = fields.get("research_questions") or []
    if not any((q.get("question") or "").strip() for q in questions):
        raise ValidationError("at least one non-empty research_question is required")
    validate_field_values(fields)


def create_draft(db: Session, author_id: str, fields: Mapping[str, Any]) -> models.Design:
    """Create a new draft design owned by ``author_id``."""

    payload = dict(fields)
    coauthor_ids = payload.pop("coauthor_ids", None) or []
    payload.pop("pending_changelog", None)
    normalized = normalize_fields(payload)
    validate_required(normalized)

    design = models.Design(
        owner_id=author_id,
        status="draft",
        version=1,
        published_version=0,
        has_draft_changes=False,
        execution_count=0,
        derived_design_count=0,
        review_count=0,
    )
    for name in models.CONTENT_FIELDS:
        setattr(design, name, normalized.get(name, empty_value(name)))
    design.authors.append(models.DesignAuthor(user_id=author_id, role="owner"))
    for coauthor_id in dict.fromkeys(coauthor_ids):
        if coauthor_id != author_id:
            design.authors.append(models.DesignAuthor(user_id=coauthor_id, role="coauthor"))
    db.add(design)
    db.flush()
    audit.log_action(db, author_id, "design.create", "design", design.id)
    logger.info("design draft created", extra={"context": {"design_id": str(design.id)}})
    return design


def update_draft(
    db: Session,
    design_id: UUID | str,
    editor_id: str,
    patch: Mapping[str, Any],
) -> models.Design:
    """Apply a partial patch to the current-state fields of a design."""

    design = load_design(db, design_id)
    require_author(design, editor_id)

    if design.execution_count >= 1:
        touched = [name for name in patch if name in models.METHODOLOGY_FIELDS]
        if touched:
            raise LockedFieldError(touched)

    normalized = normalize_fields(patch)
    validate_field_values(normalized)

    for name, value in normalized.items():
        setattr(design, name, value)
    design.version = design.version + 1
    if design.published_version > 0:
        design.has_draft_changes = True
    db.flush()
    audit.log_action(
        db,
        editor_id,
        "design.update",
        "design",
        design.id,
        {"fields": sorted(normalized), "version": design.version},
    )
    return design


def add_coauthor(
    db: Session,
    design_id: UUID | str,
    acting_user_id: str,
    user_id: str,
) -> models.Design:
    design = load_design(db, design_id)
    require_author(design, acting_user_id, "manage authors of")
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("user_id is required")
    if user_id not in design.author_ids:
        design.authors.append(models.DesignAuthor(user_id=user_id, role="coauthor"))
        db.flush()
        audit.log_action(db, acting_user_id, "design.coauthor_add", "design", design.id, {"user_id": user_id})
    return design


def remove_coauthor(
    db: Session,
    design_id: UUID | str,
    acting_user_id: str,
    user_id: str,
) -> models.Design:
    design = load_design(db, design_id)
    require_author(design, acting_user_id, "manage authors of")
    membership = next((a for a in design.authors if a.user_id == user_id), None)
    if membership is None:
        raise NotFoundError(f"user {user_id} is not an author of design {design.id}")
    if len(design.authors) <= 1:
        raise InvariantViolation("a design must keep at least one author")
    if user_id == design.owner_id:
        raise InvariantViolation("the design creator cannot be removed")
    design.authors.remove(membership)
    db.flush()
    audit.log_action(db, acting_user_id, "design.coauthor_remove", "design", design.id, {"user_id": user_id})
    return design


def delete_draft(db: Session, design_id: UUID | str, acting_user_id: str) -> None:
    """Delete a design that has never been published."""

    design = load_design(db, design_id)
    require_author(design, acting_user_id, "delete")
    if design.status != "draft" or design.published_version > 0:
        raise ValidationError("only never-published drafts can be deleted")
    audit.log_action(db, acting_user_id, "design.delete", "design", design.id)
    db.delete(design)
    db.flush()


def view_design(db: Session, design_id: UUID | str, viewer_id: str | None) -> schemas.DesignOut:
    """Return the design as ``viewer_id`` is allowed to see it.

    Authors see the live draft. Everyone else sees the latest published
    snapshot, and never-published drafts do not exist for them.
    """

    design = load_visible(db, design_id, viewer_id)
    if design.is_author(viewer_id):
        return schemas.DesignOut.model_validate(design)
    return published_view(design)


def load_visible(db: Session, design_id: UUID | str, viewer_id: str | None) -> models.Design:
    """Load a design, hiding never-published drafts from non-authors."""

    design = db.get(models.Design, _coerce_id(design_id))
    if not design:
        raise NotFoundError(f"design {design_id} not found")
    if not design.is_author(viewer_id) and not lifecycle.is_public(lifecycle.state_of(design)):
        raise NotFoundError(f"design {design_id} not found")
    return design


def published_view(design: models.Design) -> schemas.DesignOut:
    out = schemas.DesignOut.model_validate(design)
    if not design.versions:
        return out
    snapshot = design.versions[-1].data
    update = {name: snapshot.get(name, empty_value(name)) for name in models.CONTENT_FIELDS}
    update["pending_changelog"] = None
    return out.model_copy(update=update)


def list_public_designs(
    db: Session,
    *,
    discipline: str | None = None,
    difficulty: str | None = None,
    limit: int = 20,
) -> list[schemas.DesignOut]:
    """List public designs as their latest snapshots, newest first.

    Filters apply to the published snapshot, not the live draft, so filtered
    listings are read in pages until ``limit`` matches are found.
    """

    limit = max(1, min(limit, 100))
    query = (
        db.query(models.Design)
        .filter(models.Design.status.in_(("published", "locked")))
        .order_by(models.Design.created_at.desc(), models.Design.id)
    )
    if not discipline and not difficulty:
        return [published_view(design) for design in query.limit(limit).all()]

    views: list[schemas.DesignOut] = []
    offset = 0
    while len(views) < limit:
        page = query.offset(offset).limit(_LISTING_PAGE_SIZE).all()
        if not page:
            break
        offset += len(page)
        for design in page:
            view = published_view(design)
            if discipline and discipline not in view.discipline_tags:
                continue
            if difficulty and view.difficulty_level != difficulty:
                continue
            views.append(view)
    return views[:limit]


def list_author_designs(db: Session, author_id: str) -> list[models.Design]:
    return (
        db.query(models.Design)
        .join(models.DesignAuthor, models.DesignAuthor.design_id == models.Design.id)
        .filter(models.DesignAuthor.user_id == author_id)
        .order_by(models.Design.updated_at.desc())
        .all()
    )


def _normalize_items(name: str, value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list")
    schema = _ITEM_SCHEMAS[name]
    items = []
    for position, item in enumerate(value):
        if isinstance(item, pydantic.BaseModel):
            item = item.model_dump()
        try:
            parsed = schema.model_validate(item)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"{name}[{position + 1}] is invalid: {exc.errors()[0]['msg']}") from exc
        items.append(parsed.model_dump(exclude_none=True))
    return items


def empty_value(name: str) -> Any:
    if name in _ITEM_SCHEMAS or name in _STRING_LISTS:
        return []
    if name == "custom_fields":
        return {}
    if name == "seeking_collaborators":
        return False
    return None


def _coerce_id(value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFoundError(f"design {value} not found") from exc
