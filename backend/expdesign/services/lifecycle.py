"""Explicit lifecycle states derived from a design row."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .. import models


@dataclass(frozen=True)
class Draft:
    """Never published; only authors can see it."""

    fields: dict[str, Any]


@dataclass(frozen=True)
class PublishedNoDraft:
    fields: dict[str, Any]
    published_version: int


@dataclass(frozen=True)
class PublishedWithDraft:
    """Published, with unpublished edits pending in the current-state fields."""

    draft_fields: dict[str, Any]
    published_version: int
    changelog: str | None


@dataclass(frozen=True)
class Locked:
    """Executions have begun; methodology is frozen and reviews are closed."""

    fields: dict[str, Any]
    published_version: int
    execution_count: int
    has_draft_changes: bool


DesignState = Union[Draft, PublishedNoDraft, PublishedWithDraft, Locked]


def content_of(design: models.Design) -> dict[str, Any]:
    """Copy the current-state content fields of a design into a plain dict."""

    return {name: getattr(design, name) for name in models.CONTENT_FIELDS}


def state_of(design: models.Design) -> DesignState:
    fields = content_of(design)
    if design.status == "locked":
        return Locked(
            fields,
            design.published_version,
            design.execution_count,
            design.has_draft_changes,
        )
    if design.status == "published":
        if design.has_draft_changes:
            return PublishedWithDraft(fields, design.published_version, design.pending_changelog)
        return PublishedNoDraft(fields, design.published_version)
    if design.status == "draft":
        return Draft(fields)
    raise ValueError(f"unknown design status '{design.status}'")


def can_publish(state: DesignState) -> bool:
    return isinstance(state, (Draft, PublishedWithDraft))


def has_unpublished_draft(state: DesignState) -> bool:
    """True when the current-state fields differ from what the public sees."""

    if isinstance(state, (Draft, PublishedWithDraft)):
        return True
    if isinstance(state, Locked):
        return state.has_draft_changes
    return False


def is_public(state: DesignState) -> bool:
    return not isinstance(state, Draft)
