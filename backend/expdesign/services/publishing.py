"""Publishing immutable design versions and forking published designs."""

from __future__ import annotations

import copy
from typing import Iterable
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import audit, ledger, models, notify
from ..logs import get_logger
from . import design_store, lifecycle
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

# purpose: promote drafts to numbered snapshots and derive new designs from snapshots
# inputs: design ids, acting user ids, optimistic published_version tokens
# outputs: DesignVersion rows, forked Design rows, ledger and notification side effects
# status: active

logger = get_logger(__name__)

FORK_TYPES = ("replication", "iteration", "adaptation")
FORK_TITLE_PREFIX = "Fork of: "


def publish(
    db: Session,
    design_id: UUID | str,
    acting_author_id: str,
    expected_published_version: int | None = None,
    changelog: str | None = None,
) -> models.Design:
    """Freeze the current draft into snapshot ``published_version + 1``.

    ``expected_published_version`` is the caller's optimistic token. When it is
    omitted the value read here is used, so a concurrent publish that lands
    between the read and the update still fails with ``ConflictError``.
    """

    design = design_store.load_design(db, design_id)
    design_store.require_author(design, acting_author_id, "publish")

    if expected_published_version is None:
        expected = design.published_version
    else:
        expected = expected_published_version
    if expected != design.published_version:
        raise ConflictError(
            f"design {design.id} is at published version {design.published_version}, "
            f"not {expected}; reload and retry"
        )

    state = lifecycle.state_of(design)
    if not lifecycle.can_publish(state):
        raise ValidationError("nothing to publish: design has no unpublished draft changes")

    fields = copy.deepcopy(lifecycle.content_of(design))
    design_store.validate_required(fields)

    note = (changelog or "").strip() or design.pending_changelog
    previous_refs = set(design.versions[-1].data.get("reference_design_ids") or []) if design.versions else set()
    next_version = expected + 1

    result = db.execute(
        sa.update(models.Design)
        .where(
            models.Design.id == design.id,
            models.Design.published_version == expected,
        )
        .values(
            status="published",
            published_version=next_version,
            has_draft_changes=False,
            pending_changelog=None,
            version=models.Design.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"design {design.id} was published concurrently; reload and retry")

    design.versions.append(
        models.DesignVersion(
            version_number=next_version,
            published_by=acting_author_id,
            changelog=note,
            data=fields,
        )
    )
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError(f"version {next_version} of design {design.id} already exists") from exc
    db.refresh(design)

    ledger.record_events(
        db,
        design.author_ids,
        ledger.DESIGN_PUBLISHED,
        design_id=design.id,
        design_version=next_version,
    )
    credited = _credit_contributors(db, design, next_version)
    _credit_referenced_designs(
        db,
        design,
        set(fields.get("reference_design_ids") or []) - previous_refs,
    )
    notify.notify_users(
        db,
        design.author_ids,
        f"Version {next_version} of '{design.title}' was published",
        category="publish",
        title="Design published",
        actor_id=acting_author_id,
        design_id=design.id,
    )
    if credited:
        notify.notify_users(
            db,
            credited,
            f"Version {next_version} of '{design.title}' includes your accepted suggestions",
            category="suggestion",
            title="Your suggestions were published",
            actor_id=acting_author_id,
            design_id=design.id,
        )
    audit.log_action(
        db,
        acting_author_id,
        "design.publish",
        "design",
        design.id,
        {"version_number": next_version, "changelog": note},
    )
    logger.info(
        "design published",
        extra={"context": {"design_id": str(design.id), "version_number": next_version}},
    )
    return design


def fork(
    db: Session,
    design_id: UUID | str,
    forker_id: str,
    fork_type: str,
    rationale: str | None,
) -> models.Design:
    """Create a new draft owned by ``forker_id`` from the parent's latest snapshot."""

    parent = design_store.load_design(db, design_id)
    if not lifecycle.is_public(lifecycle.state_of(parent)):
        raise ValidationError("cannot fork a draft; the design must be published first")
    if parent.is_author(forker_id):
        raise AuthorizationError("authors cannot fork their own design")
    if fork_type not in FORK_TYPES:
        raise ValidationError(f"fork_type must be one of: {', '.join(FORK_TYPES)}")
    rationale = (rationale or "").strip()
    if not rationale:
        raise ValidationError("fork_rationale is required")

    data = copy.deepcopy(latest_snapshot(parent).data)
    parent_generation = (parent.fork_metadata or {}).get("fork_generation") or 0

    child = models.Design(
        owner_id=forker_id,
        status="draft",
        version=1,
        published_version=0,
        has_draft_changes=False,
        execution_count=0,
        derived_design_count=0,
        review_count=0,
        fork_metadata={
            "parent_design_id": str(parent.id),
            "fork_generation": parent_generation + 1,
            "fork_type": fork_type,
            "fork_rationale": rationale,
        },
    )
    for name in models.CONTENT_FIELDS:
        setattr(child, name, data.get(name, design_store.empty_value(name)))
    child.title = f"{FORK_TITLE_PREFIX}{data.get('title') or parent.title}"[: design_store.MAX_TITLE_LENGTH]
    child.authors.append(models.DesignAuthor(user_id=forker_id, role="owner"))
    db.add(child)

    parent.derived_design_count = models.Design.derived_design_count + 1
    db.flush()
    db.refresh(parent)

    ledger.record_events(
        db,
        parent.author_ids,
        ledger.DESIGN_DERIVED_CREATED,
        design_id=parent.id,
        design_version=parent.published_version,
        fork_design_id=child.id,
    )
    notify.notify_users(
        db,
        parent.author_ids,
        f"'{parent.title}' was forked ({fork_type})",
        category="fork",
        title="Design forked",
        actor_id=forker_id,
        design_id=parent.id,
        meta={"fork_design_id": str(child.id)},
    )
    audit.log_action(
        db,
        forker_id,
        "design.fork",
        "design",
        child.id,
        {"parent_design_id": str(parent.id), "fork_type": fork_type},
    )
    logger.info(
        "design forked",
        extra={"context": {"design_id": str(parent.id), "fork_design_id": str(child.id)}},
    )
    return child


def latest_snapshot(design: models.Design) -> models.DesignVersion:
    if not design.versions:
        raise NotFoundError(f"design {design.id} has no published versions")
    return design.versions[-1]


def list_versions(
    db: Session,
    design_id: UUID | str,
    viewer_id: str | None = None,
) -> list[models.DesignVersion]:
    design = design_store.load_visible(db, design_id, viewer_id)
    return (
        db.query(models.DesignVersion)
        .filter(models.DesignVersion.design_id == design.id)
        .order_by(models.DesignVersion.version_number.asc())
        .all()
    )


def get_version(
    db: Session,
    design_id: UUID | str,
    version_number: int,
    viewer_id: str | None = None,
) -> models.DesignVersion:
    design = design_store.load_visible(db, design_id, viewer_id)
    snapshot = (
        db.query(models.DesignVersion)
        .filter(
            models.DesignVersion.design_id == design.id,
            models.DesignVersion.version_number == version_number,
        )
        .first()
    )
    if not snapshot:
        raise NotFoundError(f"version {version_number} of design {design.id} not found")
    return snapshot


def _credit_contributors(db: Session, design: models.Design, version_number: int) -> list[str]:
    """Credit reviewers whose accepted suggestions ship in this version."""

    credited = []
    contributors = (
        db.query(models.DesignContributor)
        .filter(models.DesignContributor.design_id == design.id)
        .all()
    )
    for contributor in contributors:
        accepted = list(contributor.accepted_suggestion_ids or [])
        already = set(contributor.credited_suggestion_ids or [])
        if not [sid for sid in accepted if sid not in already]:
            continue
        ledger.record_event(
            db,
            contributor.user_id,
            ledger.DESIGN_VERSION_PUBLISHED_WITH_ACCEPTED_SUGGESTION,
            design_id=design.id,
            design_version=version_number,
        )
        contributor.credited_suggestion_ids = accepted
        contributor.version_number = version_number
        credited.append(contributor.user_id)
    return credited


def _credit_referenced_designs(db: Session, design: models.Design, referenced: Iterable[str]) -> None:
    for raw_id in sorted(referenced):
        try:
            target_id = UUID(str(raw_id))
        except ValueError:
            logger.warning(
                "skipping malformed design reference",
                extra={"context": {"design_id": str(design.id), "reference": raw_id}},
            )
            continue
        if target_id == design.id:
            continue
        target = db.get(models.Design, target_id)
        if target is None:
            continue
        ledger.record_events(
            db,
            target.author_ids,
            ledger.DESIGN_REFERENCED_BY_DESIGN,
            design_id=target.id,
            design_version=target.published_version,
            referencing_design_id=design.id,
        )
