from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from . import models


def log_action(
    db: Session,
    user_id: str,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict | None = None,
):
    """Stage an audit row in the caller's transaction."""

    log = models.AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=UUID(str(target_id)) if target_id else None,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    return log


def list_actions(db: Session, target_id: UUID, limit: int = 100):
    return (
        db.query(models.AuditLog)
        .filter(models.AuditLog.target_id == target_id)
        .order_by(models.AuditLog.created_at.asc())
        .limit(limit)
        .all()
    )
