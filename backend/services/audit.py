from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from database.models import AuditLog, Notification


def record_audit(
    db: Session,
    user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id,
    details: Optional[dict] = None
) -> None:
    """Adds an audit row to the session. The caller commits."""
    db.add(AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details or {},
        created_at=datetime.now()
    ))


def send_notification(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    notification_type: str = "general",
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None
) -> None:
    """
    In-app notification for a single user.

    Args:
        db: Database session
        user_id: Recipient
        title: Notification title
        message: Notification body
        notification_type: "general" | "verification" | "vaccination"
        related_entity_type: Optional, e.g. "doctor", "vaccination_request"
        related_entity_id: Optional id of the related entity
    """
    db.add(Notification(
        user_id=user_id,
        title=title,
        message=message,
        notification_type=notification_type,
        is_read=False,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        created_at=datetime.now()
    ))
    # Note: commit is the caller's job, we only add here
