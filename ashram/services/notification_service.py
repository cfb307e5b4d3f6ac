from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..audit_logger import audit_trail
from ..errors import NotFoundError
from .delivery_service import delivery_service

logger = structlog.get_logger(__name__)


def notify(db: Session, user_id: int, title: str, message: str, type: models.NotificationType,
           data: Optional[Dict[str, Any]] = None,
           priority: models.NotificationPriority = models.NotificationPriority.MEDIUM) -> models.Notification:
    """Stage a notification as part of the caller's transaction."""
    notification = crud.add_notification(db, user_id, title, message, type, data=data, priority=priority)
    logger.info("notification_staged", user_id=user_id, type=type.value, title=title)
    return notification


def send_notification(db: Session, payload: schemas.NotificationCreate, sender: models.User,
                      request: Optional[Request] = None) -> models.Notification:
    """Staff-initiated notification, with optional (simulated) email/SMS delivery."""
    target = crud.get_user(db, payload.user_id)
    if not target:
        raise NotFoundError("User not found")

    try:
        notification = notify(db, target.id, payload.title, payload.message, payload.type,
                              data=payload.data, priority=payload.priority)
        if payload.send_email:
            notification.email_sent = delivery_service.send_email(target.email, payload.title, payload.message)
        if payload.send_sms:
            notification.sms_sent = delivery_service.send_sms(target.phone, payload.message)
        db.flush()

        audit_trail.record(
            db, sender.id, "CREATE_NOTIFICATION", "NOTIFICATION", notification.id,
            new_data={"userId": target.id, "title": payload.title, "type": payload.type.value},
            request=request,
        )
        db.commit()
        db.refresh(notification)
        return notification
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("notification_create_failed", user_id=payload.user_id, error=str(e))
        raise crud.CRUDError(f"Database error: {str(e)}")
