"""Queue admission, status transitions and wait-time estimation.

Position assignment and every cascading write (appointment status,
notification, audit row) happen in one transaction. The Guruji's user row is
locked while the queue depth is counted, so concurrent check-ins for the same
Guruji serialize instead of reading the same count.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import structlog
from fastapi import Request
from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models
from ..audit_logger import audit_trail
from ..config import get_settings
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..security import Capability, checkin_cooldown, has_capability
from ..timeutils import as_utc, local_day_bounds, utcnow
from . import qr_service
from .notification_service import notify

logger = structlog.get_logger(__name__)

CHECKIN_WINDOW = timedelta(hours=24)

NOT_ELIGIBLE_MESSAGE = "Appointment not found or not eligible for check-in"
ALREADY_CHECKED_IN_MESSAGE = "You have already checked in for this appointment"

ALLOWED_TRANSITIONS = {
    models.QueueStatus.WAITING: {models.QueueStatus.IN_PROGRESS, models.QueueStatus.CANCELLED},
    models.QueueStatus.IN_PROGRESS: {models.QueueStatus.COMPLETED, models.QueueStatus.CANCELLED},
}

# Queue status -> mirrored appointment status
APPOINTMENT_STATUS_FOR = {
    models.QueueStatus.IN_PROGRESS: models.AppointmentStatus.IN_PROGRESS,
    models.QueueStatus.COMPLETED: models.AppointmentStatus.COMPLETED,
    models.QueueStatus.CANCELLED: models.AppointmentStatus.CANCELLED,
}


# ==================== CHECK-IN ====================

def check_in(db: Session, user: models.User, appointment_id: int, qr_data: Optional[str] = None,
             request: Optional[Request] = None, now: Optional[datetime] = None) -> models.QueueEntry:
    """Self check-in by the appointment owner, optionally with a scanned QR payload."""
    checkin_cooldown.guard(user.id)
    appointment = crud.get_appointment(db, appointment_id)
    if appointment is None or appointment.user_id != user.id:
        raise NotFoundError(NOT_ELIGIBLE_MESSAGE)

    entry = _admit(db, appointment, user, method="qr" if qr_data else "self",
                   qr_data=qr_data, request=request, now=now)
    # A failed attempt keeps the cooldown until it expires
    checkin_cooldown.release(user.id)
    return entry


def manual_check_in(db: Session, actor: models.User, appointment_code: str,
                    request: Optional[Request] = None, now: Optional[datetime] = None) -> models.QueueEntry:
    """Check-in by reference code, by the owner or by staff on their behalf."""
    checkin_cooldown.guard(actor.id)
    appointment = crud.get_appointment_by_code(db, appointment_code)
    if appointment is None or (
        appointment.user_id != actor.id and not has_capability(actor, Capability.MANUAL_CHECKIN)
    ):
        raise NotFoundError(NOT_ELIGIBLE_MESSAGE)

    entry = _admit(db, appointment, actor, method="manual", request=request, now=now)
    checkin_cooldown.release(actor.id)
    return entry


def _admit(db: Session, appointment: models.Appointment, actor: models.User, method: str,
           qr_data: Optional[str] = None, request: Optional[Request] = None,
           now: Optional[datetime] = None) -> models.QueueEntry:
    settings = get_settings()
    now = now or utcnow()

    if appointment.status == models.AppointmentStatus.CHECKED_IN or appointment.queue_entry is not None:
        raise ValidationError(ALREADY_CHECKED_IN_MESSAGE, code="ALREADY_CHECKED_IN")
    if appointment.status not in models.CHECKIN_ELIGIBLE_STATUSES:
        raise NotFoundError(NOT_ELIGIBLE_MESSAGE)
    if abs(as_utc(appointment.date) - now) > CHECKIN_WINDOW:
        raise ValidationError("Check-in is only available on the day of appointment",
                              code="OUTSIDE_CHECKIN_WINDOW")
    if qr_data:
        qr_service.parse_checkin_payload(qr_data, appointment.id)

    manual = method == "manual"
    try:
        db.query(models.User).filter(models.User.id == appointment.guruji_id).with_for_update().one()

        queue_depth = db.query(func.count(models.QueueEntry.id)).filter(
            models.QueueEntry.guruji_id == appointment.guruji_id,
            models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES),
        ).scalar()
        position = queue_depth + 1
        estimated_wait = position * settings.service_minutes_per_person

        entry = models.QueueEntry(
            appointment_id=appointment.id,
            user_id=appointment.user_id,
            guruji_id=appointment.guruji_id,
            position=position,
            status=models.QueueStatus.WAITING,
            priority=appointment.priority,
            estimated_wait=estimated_wait,
            checked_in_at=now,
        )
        db.add(entry)

        appointment.status = models.AppointmentStatus.CHECKED_IN
        appointment.checked_in_at = now
        db.flush()

        notify(
            db, appointment.user_id,
            "Manual Check-in Successful" if manual else "Check-in Successful",
            f"You are number {position} in the queue. Estimated wait time: {estimated_wait} minutes.",
            models.NotificationType.checkin,
            data={
                "appointmentId": appointment.id,
                "queuePosition": position,
                "estimatedWait": estimated_wait,
                "checkInMethod": method,
            },
        )
        audit_trail.record(
            db, actor.id, "MANUAL_CHECK_IN" if manual else "CHECK_IN", "APPOINTMENT", appointment.id,
            old_data={"status": models.AppointmentStatus.BOOKED.value},
            new_data={"status": models.AppointmentStatus.CHECKED_IN.value, "queueEntryId": entry.id,
                      "position": position, "estimatedWait": estimated_wait},
            request=request,
        )
        db.commit()
    except IntegrityError:
        # Unique appointment_id: a concurrent check-in won
        db.rollback()
        raise ValidationError(ALREADY_CHECKED_IN_MESSAGE, code="ALREADY_CHECKED_IN")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("checkin_failed", appointment_id=appointment.id, error=str(e))
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(entry)
    logger.info("checked_in", appointment_id=appointment.id, guruji_id=entry.guruji_id,
                position=position, estimated_wait=estimated_wait, method=method)
    return entry


# ==================== STATUS TRANSITIONS ====================

def _status_message(status: models.QueueStatus, guruji_name: str) -> str:
    if status == models.QueueStatus.IN_PROGRESS:
        return f"It's your turn! Please proceed to consultation room for your appointment with {guruji_name}"
    if status == models.QueueStatus.COMPLETED:
        return f"Your consultation with {guruji_name} is complete. Thank you for visiting!"
    return f"Your queue status has been updated to {status.value}"


def _open_session(db: Session, appointment_id: int) -> Optional[models.ConsultationSession]:
    return db.query(models.ConsultationSession).filter(
        models.ConsultationSession.appointment_id == appointment_id,
        models.ConsultationSession.end_time.is_(None),
    ).order_by(desc(models.ConsultationSession.start_time)).first()


def _close_session(session: models.ConsultationSession, now: datetime) -> None:
    session.end_time = now
    session.duration = max(0, round((now - as_utc(session.start_time)).total_seconds() / 60))


def update_status(db: Session, actor: models.User, queue_entry_id: int, new_status: models.QueueStatus,
                  notes: Optional[str] = None, request: Optional[Request] = None,
                  now: Optional[datetime] = None) -> models.QueueEntry:
    """Move a queue entry forward and mirror the change onto its appointment.

    Other entries keep their positions and estimates.
    """
    now = now or utcnow()
    entry = db.query(models.QueueEntry).filter(
        models.QueueEntry.id == queue_entry_id
    ).with_for_update().first()
    if entry is None:
        raise NotFoundError("Queue entry not found")
    if actor.role == models.UserRole.GURUJI and entry.guruji_id != actor.id:
        raise AuthorizationError("You can only manage your own queue")

    old_status = entry.status
    if new_status not in ALLOWED_TRANSITIONS.get(old_status, set()):
        raise ValidationError(
            f"Cannot change queue status from {old_status.value} to {new_status.value}",
            code="INVALID_STATUS_TRANSITION",
        )

    appointment = entry.appointment
    guruji_name = entry.guruji.name if entry.guruji else "Guruji"
    try:
        entry.status = new_status
        if notes is not None:
            entry.notes = notes

        if new_status == models.QueueStatus.IN_PROGRESS:
            entry.started_at = now
            db.add(models.ConsultationSession(
                appointment_id=appointment.id,
                patient_id=entry.user_id,
                guruji_id=entry.guruji_id,
                start_time=now,
            ))
        else:
            entry.completed_at = now
            session = _open_session(db, appointment.id)
            if session is not None:
                _close_session(session, now)

        old_appointment_status = appointment.status
        appointment.status = APPOINTMENT_STATUS_FOR[new_status]

        notify(
            db, entry.user_id, "Queue Status Update", _status_message(new_status, guruji_name),
            models.NotificationType.queue,
            data={"queueEntryId": entry.id, "appointmentId": appointment.id, "status": new_status.value},
            priority=models.NotificationPriority.HIGH if new_status == models.QueueStatus.IN_PROGRESS
            else models.NotificationPriority.MEDIUM,
        )
        audit_trail.record(
            db, actor.id, "UPDATE_QUEUE_STATUS", "QUEUE_ENTRY", entry.id,
            old_data={"status": old_status.value, "appointmentStatus": old_appointment_status.value},
            new_data={"status": new_status.value, "appointmentStatus": appointment.status.value,
                      "notes": notes},
            request=request,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("queue_update_failed", queue_entry_id=queue_entry_id, error=str(e))
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(entry)
    logger.info("queue_status_changed", queue_entry_id=entry.id, old=old_status.value, new=new_status.value,
                actor_id=actor.id)
    return entry


def leave_queue(db: Session, user: models.User, request: Optional[Request] = None,
                now: Optional[datetime] = None) -> models.QueueEntry:
    """The visitor withdraws their own waiting entry."""
    now = now or utcnow()
    entry = db.query(models.QueueEntry).filter(
        models.QueueEntry.user_id == user.id,
        models.QueueEntry.status == models.QueueStatus.WAITING,
    ).order_by(desc(models.QueueEntry.checked_in_at), desc(models.QueueEntry.id)).first()
    if entry is None:
        raise NotFoundError("You are not waiting in any queue")

    try:
        entry.status = models.QueueStatus.CANCELLED
        entry.completed_at = now
        entry.notes = "Left queue voluntarily"
        entry.appointment.status = models.AppointmentStatus.CANCELLED

        notify(
            db, entry.guruji_id, "Queue Update", f"{user.name} has left your queue",
            models.NotificationType.queue,
            data={"queueEntryId": entry.id, "appointmentId": entry.appointment_id},
        )
        audit_trail.record(
            db, user.id, "LEAVE_QUEUE", "QUEUE_ENTRY", entry.id,
            old_data={"status": models.QueueStatus.WAITING.value},
            new_data={"status": models.QueueStatus.CANCELLED.value},
            request=request,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("leave_queue_failed", user_id=user.id, error=str(e))
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(entry)
    return entry


# ==================== WAIT-TIME ESTIMATION ====================

def average_service_minutes(db: Session, guruji_id: int, now: Optional[datetime] = None) -> int:
    """Mean wait from check-in to start over today's completed entries, or the default."""
    settings = get_settings()
    day_start, day_end = local_day_bounds(now=now)
    rows = db.query(models.QueueEntry.checked_in_at, models.QueueEntry.started_at).filter(
        models.QueueEntry.guruji_id == guruji_id,
        models.QueueEntry.status == models.QueueStatus.COMPLETED,
        models.QueueEntry.completed_at >= day_start,
        models.QueueEntry.completed_at < day_end,
        models.QueueEntry.started_at.isnot(None),
    ).all()
    if not rows:
        return settings.service_minutes_per_person

    total = sum((as_utc(started) - as_utc(checked_in)).total_seconds() / 60 for checked_in, started in rows)
    return max(1, round(total / len(rows)))


def get_queue_status(db: Session, user: models.User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """The caller's open entry plus live stats; refreshes the stored estimate when it drifts."""
    settings = get_settings()
    entry = db.query(models.QueueEntry).filter(
        models.QueueEntry.user_id == user.id,
        models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES),
    ).order_by(desc(models.QueueEntry.checked_in_at), desc(models.QueueEntry.id)).first()
    if entry is None:
        return {"queue_entry": None, "stats": None}

    waiting_for_guruji = db.query(models.QueueEntry).filter(
        models.QueueEntry.guruji_id == entry.guruji_id,
        models.QueueEntry.status == models.QueueStatus.WAITING,
    )
    total_waiting = waiting_for_guruji.count()
    people_ahead = waiting_for_guruji.filter(models.QueueEntry.position < entry.position).count()
    average = average_service_minutes(db, entry.guruji_id, now=now)

    serving = db.query(models.QueueEntry).filter(
        models.QueueEntry.guruji_id == entry.guruji_id,
        models.QueueEntry.status == models.QueueStatus.IN_PROGRESS,
    ).order_by(models.QueueEntry.started_at).first()

    if entry.status == models.QueueStatus.WAITING:
        refreshed, changed = _refreshed_estimate(entry.estimated_wait, people_ahead * average,
                                                 settings.estimate_refresh_threshold_minutes)
        if changed:
            try:
                entry.estimated_wait = refreshed
                db.commit()
                db.refresh(entry)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning("estimate_refresh_failed", queue_entry_id=entry.id, error=str(e))

    return {
        "queue_entry": entry,
        "stats": {
            "total_waiting": total_waiting,
            "average_wait_time": average,
            "currently_serving": serving.user.name if serving and serving.user else None,
            "people_ahead": people_ahead,
        },
    }


def _refreshed_estimate(current: Optional[int], computed: int, threshold: int) -> Tuple[int, bool]:
    if current is None or abs(current - computed) > threshold:
        return computed, True
    return current, False
