# ashram/routers/checkin.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import ValidationError
from ..responses import success_response
from ..services import queue_service

router = APIRouter(
    prefix="/checkin",
    tags=["Check-in"],
    responses={404: {"description": "Not found"}},
)


def _checkin_payload(entry: models.QueueEntry) -> schemas.CheckInResponse:
    return schemas.CheckInResponse(
        queue_entry=schemas.QueueEntryResponse.model_validate(entry),
        position=entry.position,
        estimated_wait=entry.estimated_wait,
        message=f"Checked in successfully. You are number {entry.position} in the queue.",
    )


@router.post("")
def check_in(
    payload: schemas.CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    """Self check-in for the caller's own appointment (QR payload optional)."""
    try:
        entry = queue_service.check_in(db, current_user, payload.appointment_id,
                                       qr_data=payload.qr_data, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(_checkin_payload(entry), message="Check-in successful")


@router.post("/manual")
def manual_check_in(
    payload: schemas.ManualCheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    """Check-in by reference code; staff may check in any visitor."""
    try:
        entry = queue_service.manual_check_in(db, current_user, payload.appointment_code, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(_checkin_payload(entry), message="Manual check-in successful")
