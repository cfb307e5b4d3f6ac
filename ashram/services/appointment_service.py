import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..audit_logger import audit_trail
from ..config import get_settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..security import Capability, has_capability
from ..timeutils import as_utc, local_tz, localize, to_local, utcnow
from . import qr_service
from .notification_service import notify

logger = logging.getLogger(__name__)

SUNDAY = 6


def resolve_guruji(db: Session, guruji_id: Optional[int]) -> models.User:
    if guruji_id is None:
        guruji = crud.get_default_guruji(db)
        if guruji is None:
            raise NotFoundError("No Guruji is available for booking")
        return guruji

    guruji = crud.get_user(db, guruji_id)
    if guruji is None or guruji.role != models.UserRole.GURUJI or not guruji.is_active:
        raise NotFoundError("Guruji not found")
    return guruji


def validate_booking_time(start: datetime, now: datetime) -> None:
    """Future, not a Sunday, and the whole slot inside business hours (ashram local time)."""
    settings = get_settings()
    local_start = to_local(start)
    local_end = local_start + timedelta(minutes=settings.appointment_duration_minutes)
    closing = local_start.replace(hour=settings.business_hours_end, minute=0, second=0, microsecond=0)

    if start <= now:
        raise ValidationError("Appointment date must be in the future")
    if local_start.weekday() == SUNDAY:
        raise ValidationError("Appointments are not available on Sundays")
    if local_start.hour < settings.business_hours_start or local_end > closing:
        raise ValidationError(
            f"Appointments are only available between {settings.business_hours_start}:00 "
            f"and {settings.business_hours_end}:00"
        )


def book_appointment(db: Session, user: models.User, payload: schemas.AppointmentCreate,
                     request: Optional[Request] = None, now: Optional[datetime] = None) -> models.Appointment:
    settings = get_settings()
    now = now or utcnow()
    guruji = resolve_guruji(db, payload.guruji_id)

    start = localize(payload.date).astimezone(timezone.utc)
    validate_booking_time(start, now)

    if crud.find_conflicting_appointment(db, guruji.id, start, settings.conflict_window_minutes):
        raise ConflictError("Time slot is already booked", code="SLOT_CONFLICT")

    try:
        appointment = models.Appointment(
            user_id=user.id,
            guruji_id=guruji.id,
            date=start,
            start_time=start,
            end_time=start + timedelta(minutes=settings.appointment_duration_minutes),
            status=models.AppointmentStatus.BOOKED,
            priority=payload.priority,
            reason=payload.reason,
            notes=payload.notes,
            is_recurring=payload.is_recurring,
            recurring_pattern=payload.recurring_pattern,
            reference_code=crud.generate_reference_code(db),
        )
        db.add(appointment)
        db.flush()

        appointment.qr_code = qr_service.generate_qr_data_url(
            qr_service.build_checkin_payload(appointment.id, user.id)
        )

        when = to_local(start).strftime("%d %b %Y at %H:%M")
        notify(
            db, user.id, "Appointment Booked",
            f"Your appointment with {guruji.name} on {when} is booked. "
            f"Reference code: {appointment.reference_code}",
            models.NotificationType.appointment,
            data={"appointmentId": appointment.id, "referenceCode": appointment.reference_code},
        )
        audit_trail.record(
            db, user.id, "CREATE_APPOINTMENT", "APPOINTMENT", appointment.id,
            new_data={"gurujiId": guruji.id, "date": start, "priority": payload.priority.value},
            request=request,
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error booking appointment for user {user.id}: {e}")
        raise ConflictError("Time slot is already booked", code="SLOT_CONFLICT")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error booking appointment for user {user.id}: {e}")
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} booked for user {user.id} with guruji {guruji.id}")
    return appointment


def cancel_appointment(db: Session, actor: models.User, appointment_id: int,
                       request: Optional[Request] = None) -> models.Appointment:
    """Cancel an appointment that has not reached the queue yet."""
    appointment = crud.get_appointment(db, appointment_id)
    if appointment is None or (
        appointment.user_id != actor.id and not has_capability(actor, Capability.MANAGE_APPOINTMENTS)
    ):
        raise NotFoundError("Appointment not found")
    if appointment.status not in models.CHECKIN_ELIGIBLE_STATUSES:
        raise ValidationError(
            f"Appointment cannot be cancelled while {appointment.status.value}",
            code="INVALID_STATUS_TRANSITION",
        )

    try:
        old_status = appointment.status
        appointment.status = models.AppointmentStatus.CANCELLED
        notify(
            db, appointment.user_id, "Appointment Cancelled",
            f"Your appointment on {to_local(appointment.date).strftime('%d %b %Y at %H:%M')} has been cancelled.",
            models.NotificationType.appointment,
            data={"appointmentId": appointment.id},
        )
        audit_trail.record(
            db, actor.id, "CANCEL_APPOINTMENT", "APPOINTMENT", appointment.id,
            old_data={"status": old_status.value},
            new_data={"status": models.AppointmentStatus.CANCELLED.value},
            request=request,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error cancelling appointment {appointment_id}: {e}")
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(appointment)
    return appointment


def reschedule_appointment(db: Session, actor: models.User, appointment_id: int, new_date: datetime,
                           request: Optional[Request] = None, now: Optional[datetime] = None) -> models.Appointment:
    """Move a not-yet-queued appointment to a new slot with the same Guruji; the status goes back to BOOKED."""
    settings = get_settings()
    now = now or utcnow()
    appointment = crud.get_appointment(db, appointment_id)
    if appointment is None or (
        appointment.user_id != actor.id and not has_capability(actor, Capability.MANAGE_APPOINTMENTS)
    ):
        raise NotFoundError("Appointment not found")
    if appointment.status not in models.CHECKIN_ELIGIBLE_STATUSES:
        raise ValidationError(
            f"Appointment cannot be rescheduled while {appointment.status.value}",
            code="INVALID_STATUS_TRANSITION",
        )

    start = localize(new_date).astimezone(timezone.utc)
    validate_booking_time(start, now)
    if crud.find_conflicting_appointment(db, appointment.guruji_id, start, settings.conflict_window_minutes,
                                         exclude_id=appointment.id):
        raise ConflictError("This time slot is not available. Please choose a different time.",
                            code="SLOT_CONFLICT")

    old_date = appointment.date
    try:
        appointment.date = start
        appointment.start_time = start
        appointment.end_time = start + timedelta(minutes=settings.appointment_duration_minutes)
        appointment.status = models.AppointmentStatus.BOOKED

        notify(
            db, appointment.user_id, "Appointment Rescheduled",
            f"Your appointment with {appointment.guruji.name} is now on "
            f"{to_local(start).strftime('%d %b %Y at %H:%M')}.",
            models.NotificationType.appointment,
            data={"appointmentId": appointment.id, "referenceCode": appointment.reference_code},
        )
        audit_trail.record(
            db, actor.id, "RESCHEDULE_APPOINTMENT", "APPOINTMENT", appointment.id,
            old_data={"date": old_date}, new_data={"date": start},
            request=request,
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error rescheduling appointment {appointment_id}: {e}")
        raise ConflictError("Time slot is already booked", code="SLOT_CONFLICT")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error rescheduling appointment {appointment_id}: {e}")
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(appointment)
    logger.info(f"Appointment {appointment.id} rescheduled by user {actor.id}")
    return appointment


def get_availability(db: Session, day: date, guruji_id: Optional[int] = None,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    """Free slot start times (HH:MM, ashram local) for one day."""
    settings = get_settings()
    now = now or utcnow()
    tz = local_tz()

    if day < now.astimezone(tz).date():
        raise ValidationError("Cannot check availability for past dates")
    if day.weekday() == SUNDAY:
        raise ValidationError("Appointments are not available on Sundays")

    guruji = resolve_guruji(db, guruji_id)
    step = timedelta(minutes=settings.appointment_duration_minutes)
    opening = datetime(day.year, day.month, day.day, settings.business_hours_start, tzinfo=tz)
    closing = datetime(day.year, day.month, day.day, settings.business_hours_end, tzinfo=tz)

    booked = {
        to_local(start).strftime("%H:%M")
        for start in crud.get_booked_starts(db, guruji.id, opening.astimezone(timezone.utc),
                                            closing.astimezone(timezone.utc))
    }

    available = []
    slot = opening
    while slot + step <= closing:
        label = slot.strftime("%H:%M")
        if label not in booked and as_utc(slot) > now:
            available.append(label)
        slot += step

    return {
        "date": day,
        "guruji_id": guruji.id,
        "slot_minutes": settings.appointment_duration_minutes,
        "available_slots": available,
        "booked_slots": sorted(booked),
    }
