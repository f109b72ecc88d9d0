from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user_id, get_optional_user_id
from .. import schemas
from ..services import design_store, executions, publishing
from ..services.errors import DesignError
from .common import rate_limit, to_http

router = APIRouter(prefix="/api/designs", tags=["designs"])


@router.post("/", response_model=schemas.DesignOut, status_code=status.HTTP_201_CREATED)
def create_design(
    payload: schemas.DesignCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        design = design_store.create_draft(db, user_id, payload.model_dump(exclude_none=True))
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(design)
    return design


@router.get("/", response_model=list[schemas.DesignOut])
def list_designs(
    discipline: Optional[str] = Query(None),
    difficulty: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return design_store.list_public_designs(
        db, discipline=discipline, difficulty=difficulty, limit=limit
    )


@router.get("/mine", response_model=list[schemas.DesignOut])
def list_my_designs(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return design_store.list_author_designs(db, user_id)


@router.get("/{design_id}", response_model=schemas.DesignOut)
def get_design(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return design_store.view_design(db, design_id, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.patch("/{design_id}", response_model=schemas.DesignOut)
def update_design(
    design_id: UUID,
    payload: schemas.DesignUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        design = design_store.update_draft(
            db, design_id, user_id, payload.model_dump(exclude_unset=True)
        )
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(design)
    return design


@router.delete("/{design_id}")
def delete_design(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        design_store.delete_draft(db, design_id, user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    return {"detail": "deleted"}


@router.post("/{design_id}/publish", response_model=schemas.DesignOut)
def publish_design(
    design_id: UUID,
    payload: Optional[schemas.PublishRequest] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    payload = payload or schemas.PublishRequest()
    try:
        design = publishing.publish(
            db,
            design_id,
            user_id,
            expected_published_version=payload.expected_published_version,
            changelog=payload.changelog,
        )
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(design)
    return design


@router.post(
    "/{design_id}/fork",
    response_model=schemas.DesignOut,
    status_code=status.HTTP_201_CREATED,
)
@rate_limit("10/minute")
def fork_design(
    request: Request,
    design_id: UUID,
    payload: schemas.ForkRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        child = publishing.fork(
            db, design_id, user_id, payload.fork_type, payload.fork_rationale
        )
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(child)
    return child


@router.get("/{design_id}/versions", response_model=list[schemas.DesignVersionSummary])
def list_design_versions(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return publishing.list_versions(db, design_id, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.get(
    "/{design_id}/versions/{version_number}", response_model=schemas.DesignVersionOut
)
def get_design_version(
    design_id: UUID,
    version_number: int,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    try:
        return publishing.get_version(db, design_id, version_number, user_id)
    except DesignError as exc:
        raise to_http(db, exc) from exc


@router.post("/{design_id}/coauthors", response_model=schemas.DesignOut)
def add_design_coauthor(
    design_id: UUID,
    payload: schemas.CoauthorAdd,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        design = design_store.add_coauthor(db, design_id, user_id, payload.user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(design)
    return design


@router.delete("/{design_id}/coauthors/{coauthor_id}", response_model=schemas.DesignOut)
def remove_design_coauthor(
    design_id: UUID,
    coauthor_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        design = design_store.remove_coauthor(db, design_id, user_id, coauthor_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(design)
    return design


@router.post(
    "/{design_id}/executions",
    response_model=schemas.DesignExecutionOut,
    status_code=status.HTTP_201_CREATED,
)
def record_design_execution(
    design_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        execution = executions.record_execution(db, design_id, user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(execution)
    return execution


@router.delete("/{design_id}/executions/{execution_id}", response_model=schemas.DesignExecutionOut)
def cancel_design_execution(
    design_id: UUID,
    execution_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        execution = executions.cancel_execution(db, design_id, execution_id, user_id)
        db.commit()
    except DesignError as exc:
        raise to_http(db, exc) from exc
    db.refresh(execution)
    return execution
