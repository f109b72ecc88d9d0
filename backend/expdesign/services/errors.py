"""Domain error taxonomy shared by the design services."""

from __future__ import annotations

from typing import Iterable


class DesignError(RuntimeError):
    """Base error for design versioning and review flows."""


class ValidationError(DesignError):
    """Raised when input is malformed or incomplete."""


class AuthorizationError(DesignError):
    """Raised when the actor lacks the required relationship to the resource."""


class LockedFieldError(DesignError):
    """Raised when a methodology field is edited after execution has begun."""

    def __init__(self, fields: Iterable[str]):
        self.fields = sorted(set(fields))
        super().__init__(
            "design is locked after execution; cannot change: "
            + ", ".join(self.fields)
            + ". Fork this design to modify methodology."
        )


class NotFoundError(DesignError):
    """Raised when a design, review, suggestion or version cannot be located."""


class StaleSuggestionError(DesignError):
    """Raised when a positional suggestion no longer resolves against the draft."""


class ConflictError(DesignError):
    """Raised on optimistic concurrency failures and duplicate one-shot writes."""


class InvariantViolation(DesignError):
    """Raised when an operation would break a structural invariant."""
