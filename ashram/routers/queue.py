# ashram/routers/queue.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import ValidationError
from ..responses import success_response
from ..services import queue_service

router = APIRouter(
    prefix="/queue",
    tags=["Queue"],
    responses={404: {"description": "Not found"}},
)


@router.get("")
def read_my_queue_status(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    result = queue_service.get_queue_status(db, current_user)
    entry = result["queue_entry"]
    return success_response(schemas.QueueStatusResponse(
        queue_entry=schemas.QueueEntryResponse.model_validate(entry) if entry else None,
        stats=schemas.QueueStats(**result["stats"]) if result["stats"] else None,
    ))


@router.patch("")
def update_queue_status(
    payload: schemas.QueueUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.MANAGE_QUEUE)),
):
    try:
        entry = queue_service.update_status(db, current_user, payload.queue_entry_id, payload.status,
                                            notes=payload.notes, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.QueueEntryResponse.model_validate(entry),
                            message="Queue status updated successfully")


@router.post("/leave")
def leave_queue(
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        entry = queue_service.leave_queue(db, current_user, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.QueueEntryResponse.model_validate(entry),
                            message="You have left the queue")


@router.get("/guruji")
def read_guruji_queue(
    guruji_id: Optional[int] = Query(None, alias="gurujiId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_QUEUES)),
):
    """A Guruji sees their own live queue; other staff pick one with gurujiId."""
    if current_user.role == models.UserRole.GURUJI:
        guruji_id = current_user.id
    elif guruji_id is None:
        raise ValidationError("gurujiId is required")

    try:
        entries = crud.get_open_queue_entries(db, guruji_id=guruji_id)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response({
        "gurujiId": guruji_id,
        "entries": [schemas.QueueEntryResponse.model_validate(e) for e in entries],
        "waiting": sum(1 for e in entries if e.status == models.QueueStatus.WAITING),
        "inProgress": sum(1 for e in entries if e.status == models.QueueStatus.IN_PROGRESS),
    })
