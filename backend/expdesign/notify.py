from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from . import models


def notify_users(
    db: Session,
    user_ids: Iterable[str],
    message: str,
    *,
    category: str,
    title: str | None = None,
    actor_id: str | None = None,
    design_id: UUID | None = None,
    meta: dict | None = None,
) -> list[models.Notification]:
    """Stage one notification per recipient, skipping the acting user."""

    payload = dict(meta or {})
    if design_id is not None:
        payload.setdefault("design_id", str(design_id))
        payload.setdefault("action_url", f"/designs/{design_id}")
    if actor_id is not None:
        payload.setdefault("actor_id", actor_id)

    created = []
    seen: set[str] = set()
    for user_id in user_ids:
        if user_id == actor_id or user_id in seen:
            continue
        seen.add(user_id)
        notification = models.Notification(
            user_id=user_id,
            message=message,
            title=title,
            category=category,
            meta=payload,
        )
        db.add(notification)
        created.append(notification)
    return created


def list_for_user(
    db: Session,
    user_id: str,
    *,
    unread_only: bool = False,
    category: str | None = None,
):
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if unread_only:
        query = query.filter(models.Notification.is_read.is_(False))
    if category:
        query = query.filter(models.Notification.category == category)
    return query.order_by(models.Notification.created_at.desc()).all()
