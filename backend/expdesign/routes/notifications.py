from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user_id
from .. import models, schemas, notify

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/", response_model=list[schemas.NotificationOut])
def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    category: Optional[str] = Query(None, description="Filter by category"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return notify.list_for_user(db, user_id, unread_only=unread_only, category=category)


@router.post("/{notification_id}/read", response_model=schemas.NotificationOut)
def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    notif = (
        db.query(models.Notification)
        .filter_by(id=notification_id, user_id=user_id)
        .first()
    )
    if not notif:
        raise HTTPException(status_code=404, detail="Notification not found")
    notif.is_read = True
    db.commit()
    db.refresh(notif)
    return notif


@router.post("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Mark all unread notifications as read"""
    updated = 0
    for notif in notify.list_for_user(db, user_id, unread_only=True):
        notif.is_read = True
        updated += 1
    db.commit()
    return {"message": "All notifications marked as read", "updated": updated}
