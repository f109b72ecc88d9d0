import os

from fastapi import HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ..services.errors import (
    AuthorizationError,
    ConflictError,
    DesignError,
    InvariantViolation,
    LockedFieldError,
    NotFoundError,
    StaleSuggestionError,
    ValidationError,
)

limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


STATUS_BY_ERROR = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    LockedFieldError: status.HTTP_409_CONFLICT,
    StaleSuggestionError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    InvariantViolation: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def to_http(db: Session, exc: DesignError) -> HTTPException:
    """Roll back the request's work and translate a domain error into a response."""

    db.rollback()
    code = next(
        (STATUS_BY_ERROR[cls] for cls in type(exc).__mro__ if cls in STATUS_BY_ERROR),
        status.HTTP_400_BAD_REQUEST,
    )
    return HTTPException(status_code=code, detail=str(exc))
