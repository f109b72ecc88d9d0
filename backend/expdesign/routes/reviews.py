from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user_id, get_optional_user_id
from .. import schemas
from ..services import reviews
from ..services.errors import DesignError
from .common import rate_limit, to_http

router = APIRouter(prefix="/api/designs", tags=["reviews"])


@router.post(
    "/{design_id}/reviews",
    response_model=schemas.ReviewOut,
    status_code=status.HTTP_201_CREATED,
)
@rate_limit("20/minute")
def submit_review(
    request: Request,
    design_id: UUID,
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        review = reviews.submit_review(db, design_id, user_id, payload)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(review)
    return review


@router.get("/{design_id}/reviews", response_model=list[schemas.ReviewOut])
def list_reviews(
    design_id: UUID,
    version: Optional[int] = Query(None, ge=1),
    include_superseded: bool = Query(False),
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return reviews.list_reviews(
            db, design_id, user_id, version=version, include_superseded=include_superseded
        )
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.get("/{design_id}/reviews/{review_id}", response_model=schemas.ReviewOut)
def get_review(
    design_id: UUID,
    review_id: UUID,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return reviews.get_review(db, design_id, review_id, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.get("/{design_id}/review-summary", response_model=schemas.ReviewSummaryOut)
def get_review_summary(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return reviews.review_summary(db, design_id, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.post(
    "/{design_id}/endorsements",
    response_model=schemas.ReviewOut,
    status_code=status.HTTP_201_CREATED,
)
def endorse_design(
    design_id: UUID,
    payload: schemas.EndorsementCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        review = reviews.endorse_design(db, design_id, user_id, payload.comment)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(review)
    return review


@router.get("/{design_id}/endorsements", response_model=list[schemas.EndorsementOut])
def list_endorsements(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return reviews.list_endorsements(db, design_id, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.post(
    "/{design_id}/reviews/{review_id}/suggestions/{suggestion_id}/accept",
    response_model=schemas.AcceptSuggestionOut,
)
def accept_suggestion(
    design_id: UUID,
    review_id: UUID,
    suggestion_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        _check_review_design(db, design_id, review_id, user_id)
        suggestion, draft_created = reviews.accept_suggestion(db, review_id, suggestion_id, user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(suggestion)
    return schemas.AcceptSuggestionOut(
        suggestion=schemas.FieldSuggestionOut.model_validate(suggestion),
        draft_created=draft_created,
    )


@router.post(
    "/{design_id}/reviews/{review_id}/suggestions/{suggestion_id}/close",
    response_model=schemas.FieldSuggestionOut,
)
def close_suggestion(
    design_id: UUID,
    review_id: UUID,
    suggestion_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        _check_review_design(db, design_id, review_id, user_id)
        suggestion = reviews.close_suggestion(db, review_id, suggestion_id, user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(suggestion)
    return suggestion


@router.post(
    "/{design_id}/reviews/{review_id}/suggestions/{suggestion_id}/reply",
    response_model=schemas.FieldSuggestionOut,
)
def reply_to_suggestion(
    design_id: UUID,
    review_id: UUID,
    suggestion_id: UUID,
    payload: schemas.SuggestionReply,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        _check_review_design(db, design_id, review_id, user_id)
        suggestion = reviews.reply_to_suggestion(
            db, review_id, suggestion_id, user_id, payload.reply
        )
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(suggestion)
    return suggestion


def _check_review_design(db: Session, design_id: UUID, review_id: UUID, user_id: str) -> None:
    # raises NotFoundError when the review belongs to another design
    reviews.get_review(db, design_id, review_id, user_id)
