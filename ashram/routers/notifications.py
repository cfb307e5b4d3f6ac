# ashram/routers/notifications.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..responses import success_response
from ..services import notification_service

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
    responses={404: {"description": "Not found"}},
)


def _owned_notification(db: Session, notification_id: int, current_user: models.User) -> models.Notification:
    notification = crud.get_notification(db, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification.user_id != current_user.id and current_user.role != models.UserRole.ADMIN:
        raise AuthorizationError("You can only manage your own notifications")
    return notification


@router.get("")
def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    type: Optional[models.NotificationType] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        items, total, unread = crud.get_notifications(db, current_user.id, unread_only, type, limit, offset)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.NotificationListResponse(
        notifications=[schemas.NotificationResponse.model_validate(n) for n in items],
        total=total,
        unread=unread,
        limit=limit,
        offset=offset,
    ))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_notification(
    payload: schemas.NotificationCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.SEND_NOTIFICATIONS)),
):
    try:
        notification = notification_service.send_notification(db, payload, current_user, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.NotificationResponse.model_validate(notification),
                            message="Notification created", status_code=status.HTTP_201_CREATED)


@router.post("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        count = crud.mark_all_notifications_read(db, current_user.id)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response({"count": count}, message=f"{count} notifications marked as read")


@router.patch("/{notification_id}")
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    notification = _owned_notification(db, notification_id, current_user)
    try:
        notification = crud.mark_notification_read(db, notification)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.NotificationResponse.model_validate(notification))


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    notification = _owned_notification(db, notification_id, current_user)
    try:
        crud.delete_notification(db, notification)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response({"id": notification_id}, message="Notification deleted")
