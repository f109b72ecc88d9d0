"""Field references addressing parts of a design for review suggestions."""

from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from .errors import StaleSuggestionError, ValidationError

# purpose: translate between fieldRef strings and structured references, resolve and apply them
# inputs: raw fieldRef / newFieldName strings, design field dictionaries (draft or snapshot data)
# outputs: FieldRef values, resolved field content, draft patches for accepted suggestions
# status: active

TEXT_FIELDS = (
    "title",
    "summary",
    "hypothesis",
    "safety_considerations",
    "ethical_considerations",
    "analysis_plan",
    "disclaimers",
    "collaboration_notes",
)

# ordered list fields and the item key holding their editable text (None: items are strings)
LIST_TEXT_KEYS: dict[str, str | None] = {
    "steps": "instruction",
    "research_questions": "question",
    "independent_variables": "name",
    "dependent_variables": "name",
    "controlled_variables": "name",
    "references": "citation",
    "statistical_methods": None,
}

MATERIALS = "materials"

_REF_PATTERN = re.compile(r"^([a-z_]+)(?:\[(new|\d+)\])?$")
_MATERIAL_SPLIT = re.compile(r"[\n;]+")


class RefKind(str, Enum):
    WHOLE_FIELD = "whole_field"
    LIST_INDEX = "list_index"
    NEW_LIST_ITEM = "new_list_item"
    NEW_FIELD = "new_field"


class OutOfRangeError(StaleSuggestionError):
    """Raised when an indexed reference no longer resolves against a list."""


@dataclass(frozen=True)
class FieldRef:
    """Structured form of a fieldRef; ``index`` is 1-based."""

    kind: RefKind
    field: str
    index: int | None = None
    custom: bool = False

    def __str__(self) -> str:
        if self.kind is RefKind.LIST_INDEX:
            return f"{self.field}[{self.index}]"
        if self.kind is RefKind.NEW_LIST_ITEM:
            return f"{self.field}[new]"
        return self.field


def build_ref(field_key: str, index: int | None = None, is_new: bool = False) -> str:
    """Build the canonical fieldRef string from a 0-based UI selection."""

    if is_new:
        return f"{field_key}[new]"
    if index is not None:
        if index < 0:
            raise ValidationError(f"index for {field_key} must be non-negative")
        return f"{field_key}[{index + 1}]"
    return field_key


def parse_field_ref(raw: str, custom_fields: Mapping[str, Any] | None = None) -> FieldRef:
    """Parse a fieldRef string, rejecting unknown fields and invalid addressing."""

    value = (raw or "").strip()
    if not value:
        raise ValidationError("fieldRef must not be empty")
    if custom_fields and value in custom_fields:
        return FieldRef(RefKind.WHOLE_FIELD, value, custom=True)

    match = _REF_PATTERN.match(value)
    if not match:
        raise ValidationError(f"fieldRef '{value}' is not a valid field reference")
    field, sub = match.group(1), match.group(2)

    if field == MATERIALS:
        if sub is not None:
            raise ValidationError("materials can only be addressed as a whole field")
        return FieldRef(RefKind.WHOLE_FIELD, field)
    if field in TEXT_FIELDS:
        if sub is not None:
            raise ValidationError(f"{field} is not a list field and cannot be indexed")
        return FieldRef(RefKind.WHOLE_FIELD, field)
    if field not in LIST_TEXT_KEYS:
        raise ValidationError(f"fieldRef '{value}' does not name a design field")
    if sub is None:
        return FieldRef(RefKind.WHOLE_FIELD, field)
    if sub == "new":
        return FieldRef(RefKind.NEW_LIST_ITEM, field)
    index = int(sub)
    if index < 1:
        raise ValidationError(f"fieldRef '{value}' must use a 1-based index")
    return FieldRef(RefKind.LIST_INDEX, field, index)


def new_field_ref(name: str) -> FieldRef:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("newFieldName must not be empty")
    return FieldRef(RefKind.NEW_FIELD, cleaned, custom=True)


def resolve_current_value(data: Mapping[str, Any], ref: FieldRef) -> Any:
    """Return the content a reference points at within ``data``."""

    if ref.kind in (RefKind.NEW_LIST_ITEM, RefKind.NEW_FIELD):
        return None
    if ref.custom:
        return (data.get("custom_fields") or {}).get(ref.field)
    value = data.get(ref.field)
    if ref.kind is RefKind.WHOLE_FIELD:
        return value
    items = value or []
    position = ref.index - 1
    if position >= len(items):
        raise OutOfRangeError(
            f"{ref} is out of range: {ref.field} has {len(items)} item(s)"
        )
    return items[position]


def locate_bound_index(items: Sequence[Any], ref: FieldRef, bound_value: Any) -> int:
    """Find the 0-based position of the item a suggestion was filed against.

    The item must either still sit at the referenced index or appear exactly
    once elsewhere in the list (the list was reordered). Anything else means
    the reference can no longer be trusted.
    """

    position = ref.index - 1
    if bound_value is None:
        if position >= len(items):
            raise OutOfRangeError(
                f"{ref} is out of range: {ref.field} has {len(items)} item(s)"
            )
        return position
    if position < len(items) and items[position] == bound_value:
        return position
    matches = [i for i, item in enumerate(items) if item == bound_value]
    if len(matches) == 1:
        return matches[0]
    raise OutOfRangeError(
        f"{ref} no longer matches the reviewed content of {ref.field}; re-review required"
    )


def build_patch(
    data: Mapping[str, Any],
    ref: FieldRef,
    proposed_text: str | None,
    *,
    remove_material_ids: Sequence[str] | None = None,
    bound_value: Any = None,
) -> dict[str, Any]:
    """Compute the draft patch that applies a suggestion to ``data``.

    Returns an empty dict when the suggestion carries nothing to apply
    (comment-only suggestions).
    """

    if ref.custom:
        if proposed_text is None:
            return {}
        custom = dict(data.get("custom_fields") or {})
        custom[ref.field] = proposed_text
        return {"custom_fields": custom}

    if ref.field == MATERIALS:
        return _materials_patch(data, proposed_text, remove_material_ids or [])

    if proposed_text is None:
        return {}

    if ref.field in TEXT_FIELDS:
        return {ref.field: proposed_text}

    items = copy.deepcopy(list(data.get(ref.field) or []))
    if ref.kind is RefKind.WHOLE_FIELD:
        lines = [line.strip() for line in proposed_text.splitlines() if line.strip()]
        return {ref.field: [_new_item(ref.field, line, i) for i, line in enumerate(lines)]}
    if ref.kind is RefKind.NEW_LIST_ITEM:
        items.append(_new_item(ref.field, proposed_text, len(items)))
        return {ref.field: items}

    position = locate_bound_index(items, ref, bound_value)
    text_key = LIST_TEXT_KEYS[ref.field]
    if text_key is None:
        items[position] = proposed_text
    else:
        item = dict(items[position]) if isinstance(items[position], dict) else {}
        item[text_key] = proposed_text
        items[position] = item
    return {ref.field: items}


def pending_materials(text: str | None) -> list[dict[str, Any]]:
    """Split free-text material additions into pending manual items."""

    if not text:
        return []
    return [
        {
            "material_id": None,
            "quantity": "",
            "criticality": "optional",
            "alternatives_allowed": True,
            "description": line.strip(),
            "pending": True,
        }
        for line in _MATERIAL_SPLIT.split(text)
        if line.strip()
    ]


def _materials_patch(
    data: Mapping[str, Any],
    add_text: str | None,
    remove_ids: Sequence[str],
) -> dict[str, Any]:
    current = copy.deepcopy(list(data.get(MATERIALS) or []))
    if remove_ids:
        removal = set(remove_ids)
        current = [m for m in current if m.get("material_id") not in removal]
    additions = pending_materials(add_text)
    if not remove_ids and not additions:
        return {}
    return {MATERIALS: current + additions}


def _new_item(field: str, text: str, position: int) -> Any:
    if field == "steps":
        return {"step_number": position + 1, "instruction": text}
    if field == "research_questions":
        return {"id": str(uuid.uuid4()), "question": text, "expected_data_type": "numeric"}
    if field.endswith("_variables"):
        return {"name": text, "type": "continuous", "values_or_range": ""}
    if field == "references":
        return {"citation": text}
    return text
