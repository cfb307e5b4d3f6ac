# ashram/routers/appointments.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import ValidationError
from ..limiter import limiter
from ..config import get_settings
from ..responses import success_response
from ..services import appointment_service

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


@router.get("")
def list_my_appointments(
    status_filter: Optional[models.AppointmentStatus] = Query(None, alias="status"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        items, total = crud.get_user_appointments(db, current_user.id, status_filter, limit, offset)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response({
        "appointments": [schemas.AppointmentResponse.model_validate(a) for a in items],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(items) < total,
        },
    })


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(get_settings().booking_rate_limit)
def create_appointment(
    request: Request,
    appointment: schemas.AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.BOOK_APPOINTMENT)),
):
    """Book a 30-minute appointment with a Guruji (the default one when none is given)."""
    try:
        created = appointment_service.book_appointment(db, current_user, appointment, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(
        schemas.AppointmentResponse.model_validate(created),
        message="Appointment booked successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("/availability")
def read_availability(
    day: date = Query(..., alias="date"),
    guruji_id: Optional[int] = Query(None, alias="gurujiId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    availability = appointment_service.get_availability(db, day, guruji_id)
    return success_response(schemas.AvailabilityResponse.model_validate(availability))


@router.post("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        cancelled = appointment_service.cancel_appointment(db, current_user, appointment_id, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.AppointmentResponse.model_validate(cancelled),
                            message="Appointment cancelled")


@router.post("/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: int,
    payload: schemas.AppointmentReschedule,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        moved = appointment_service.reschedule_appointment(db, current_user, appointment_id, payload.date,
                                                           request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.AppointmentResponse.model_validate(moved),
                            message="Appointment rescheduled")
