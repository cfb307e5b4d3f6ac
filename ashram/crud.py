# ashram/crud.py
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, desc, func, select
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple
import logging
import secrets

from . import models, schemas
from .security import get_password_hash
from .timeutils import utcnow, local_day_bounds

logger = logging.getLogger(__name__)


class CRUDError(Exception):
    pass


# ==================== USERS ====================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    try:
        return db.get(models.User, user_id)
    except SQLAlchemyError as e:
        logger.error(f"Error fetching user {user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_user_by_identifier(db: Session, identifier: str) -> Optional[models.User]:
    """Get user by email OR phone."""
    try:
        return db.query(models.User).filter(
            or_(models.User.email == identifier, models.User.phone == identifier)
        ).first()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching user by identifier '{identifier}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_users(db: Session, skip: int = 0, limit: int = 100, role: Optional[models.UserRole] = None,
              is_active: Optional[bool] = None) -> Tuple[List[models.User], int]:
    try:
        query = db.query(models.User)
        if role:
            query = query.filter(models.User.role == role)
        if is_active is not None:
            query = query.filter(models.User.is_active == is_active)
        total = query.count()
        users = query.order_by(models.User.name, models.User.id).offset(skip).limit(limit).all()
        return users, total
    except SQLAlchemyError as e:
        logger.error(f"Error fetching users: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    try:
        if user.email and db.query(models.User).filter(models.User.email == user.email).first():
            raise CRUDError("Email already exists")
        if user.phone and db.query(models.User).filter(models.User.phone == user.phone).first():
            raise CRUDError("Phone already exists")

        db_user = models.User(
            name=user.name,
            email=user.email,
            phone=user.phone,
            role=user.role,
            password_hash=get_password_hash(user.password) if user.password else None,
            is_active=True,
        )
        db.add(db_user)
        db.flush()
        logger.info(f"User {db_user.id} created with role {db_user.role.value}")
        return db_user
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error creating user: {str(e)}")
        raise CRUDError("User with this email or phone already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating user: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def set_user_active(db: Session, user: models.User, is_active: bool) -> models.User:
    try:
        user.is_active = is_active
        db.flush()
        return user
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating status for user {user.id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def update_user(db: Session, db_user: models.User, update: schemas.UserUpdate) -> models.User:
    data = update.model_dump(exclude_unset=True)
    try:
        email = data.get("email")
        if email and email != db_user.email and \
                db.query(models.User).filter(models.User.email == email).first():
            raise CRUDError("Email is already in use by another user")
        phone = data.get("phone")
        if phone and phone != db_user.phone and \
                db.query(models.User).filter(models.User.phone == phone).first():
            raise CRUDError("Phone is already in use by another user")
        if not data.get("email", db_user.email) and not data.get("phone", db_user.phone):
            raise CRUDError("Either email or phone is required")

        password = data.pop("password", None)
        for key, value in data.items():
            setattr(db_user, key, value)
        if password:
            db_user.password_hash = get_password_hash(password)

        db.flush()
        return db_user
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error updating user {db_user.id}: {str(e)}")
        raise CRUDError("User with this email or phone already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating user {db_user.id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_user_activity_counts(db: Session, user_id: int) -> Dict[str, int]:
    return {
        "appointments": db.query(func.count(models.Appointment.id)).filter(
            models.Appointment.user_id == user_id).scalar(),
        "consultation_sessions": db.query(func.count(models.ConsultationSession.id)).filter(
            models.ConsultationSession.patient_id == user_id).scalar(),
        "remedy_documents": db.query(func.count(models.RemedyDocument.id)).filter(
            models.RemedyDocument.user_id == user_id).scalar(),
        "notifications": db.query(func.count(models.Notification.id)).filter(
            models.Notification.user_id == user_id).scalar(),
    }


def get_recent_appointments(db: Session, user_id: int, limit: int = 5) -> List[models.Appointment]:
    return db.query(models.Appointment).filter(models.Appointment.user_id == user_id).order_by(
        desc(models.Appointment.date), desc(models.Appointment.id)
    ).limit(limit).all()


def user_has_history(db: Session, user_id: int) -> bool:
    """True when other rows reference the user, so it can only be deactivated."""
    checks = (
        db.query(models.Appointment.id).filter(
            or_(models.Appointment.user_id == user_id, models.Appointment.guruji_id == user_id)),
        db.query(models.QueueEntry.id).filter(
            or_(models.QueueEntry.user_id == user_id, models.QueueEntry.guruji_id == user_id)),
        db.query(models.ConsultationSession.id).filter(
            or_(models.ConsultationSession.patient_id == user_id, models.ConsultationSession.guruji_id == user_id)),
        db.query(models.RemedyDocument.id).filter(models.RemedyDocument.user_id == user_id),
        db.query(models.AuditLog.id).filter(models.AuditLog.user_id == user_id),
    )
    return any(query.first() is not None for query in checks)


def delete_user(db: Session, db_user: models.User) -> None:
    try:
        db.delete(db_user)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting user {db_user.id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_guruji_patients(db: Session, guruji_id: int, search: Optional[str] = None,
                        limit: int = 50) -> List[Dict[str, Any]]:
    """Active visitors who booked with this Guruji, each with their latest booking."""
    try:
        booked = select(models.Appointment.user_id).where(models.Appointment.guruji_id == guruji_id)
        query = db.query(models.User).filter(
            models.User.id.in_(booked),
            models.User.is_active.is_(True),
        )
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(models.User.name.ilike(pattern), models.User.email.ilike(pattern)))
        patients = query.order_by(models.User.name, models.User.id).limit(limit).all()

        in_queue = {
            row[0] for row in db.query(models.QueueEntry.user_id).filter(
                models.QueueEntry.guruji_id == guruji_id,
                models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES),
            ).all()
        }

        results = []
        for patient in patients:
            latest = db.query(models.Appointment).filter(
                models.Appointment.user_id == patient.id,
                models.Appointment.guruji_id == guruji_id,
            ).order_by(desc(models.Appointment.date), desc(models.Appointment.id)).first()
            results.append({"patient": patient, "last_appointment": latest, "in_queue": patient.id in in_queue})
        return results
    except SQLAlchemyError as e:
        logger.error(f"Error fetching patients for guruji {guruji_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_default_guruji(db: Session) -> Optional[models.User]:
    return db.query(models.User).filter(
        models.User.role == models.UserRole.GURUJI,
        models.User.is_active.is_(True),
    ).order_by(models.User.id).first()


# ==================== APPOINTMENTS ====================

def generate_reference_code(db: Session) -> str:
    """Short human-readable code printed on the booking, used for manual check-in."""
    while True:
        code = secrets.token_hex(4).upper()
        exists = db.query(models.Appointment.id).filter(models.Appointment.reference_code == code).first()
        if not exists:
            return code


def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    return db.query(models.Appointment).options(
        joinedload(models.Appointment.guruji),
        joinedload(models.Appointment.user),
    ).filter(models.Appointment.id == appointment_id).first()


def get_appointment_by_code(db: Session, code: str) -> Optional[models.Appointment]:
    """Resolve a manual check-in code: the reference code, or the numeric id."""
    appointment = db.query(models.Appointment).filter(
        models.Appointment.reference_code == code.upper()
    ).first()
    if appointment is None and code.isdigit():
        appointment = db.get(models.Appointment, int(code))
    return appointment


def get_user_appointments(db: Session, user_id: int, status: Optional[models.AppointmentStatus] = None,
                          limit: int = 10, offset: int = 0) -> Tuple[List[models.Appointment], int]:
    try:
        query = db.query(models.Appointment).filter(models.Appointment.user_id == user_id)
        if status:
            query = query.filter(models.Appointment.status == status)
        total = query.count()
        items = query.options(joinedload(models.Appointment.guruji)).order_by(
            desc(models.Appointment.date), desc(models.Appointment.id)
        ).offset(offset).limit(limit).all()
        return items, total
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointments for user {user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_staff_appointments(db: Session, status: Optional[models.AppointmentStatus] = None,
                           search: Optional[str] = None, limit: int = 20,
                           offset: int = 0) -> Tuple[List[models.Appointment], int]:
    try:
        query = db.query(models.Appointment)
        if status:
            query = query.filter(models.Appointment.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                models.Appointment.reason.ilike(pattern),
                models.Appointment.notes.ilike(pattern),
                models.Appointment.reference_code.ilike(pattern),
            ))
        total = query.count()
        items = query.options(
            joinedload(models.Appointment.user),
            joinedload(models.Appointment.guruji),
        ).order_by(desc(models.Appointment.created_at), desc(models.Appointment.id)).offset(offset).limit(limit).all()
        return items, total
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointments: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def find_conflicting_appointment(db: Session, guruji_id: int, start: datetime, window_minutes: int,
                                 exclude_id: Optional[int] = None) -> Optional[models.Appointment]:
    window = timedelta(minutes=window_minutes)
    query = db.query(models.Appointment).filter(
        models.Appointment.guruji_id == guruji_id,
        models.Appointment.date > start - window,
        models.Appointment.date < start + window,
        models.Appointment.status.notin_([models.AppointmentStatus.CANCELLED, models.AppointmentStatus.NO_SHOW]),
    )
    if exclude_id is not None:
        query = query.filter(models.Appointment.id != exclude_id)
    return query.first()


def get_booked_starts(db: Session, guruji_id: int, start: datetime, end: datetime) -> List[datetime]:
    rows = db.query(models.Appointment.start_time).filter(
        models.Appointment.guruji_id == guruji_id,
        models.Appointment.start_time >= start,
        models.Appointment.start_time < end,
        models.Appointment.status.in_(models.SLOT_OCCUPYING_STATUSES),
    ).all()
    return [row[0] for row in rows]


# ==================== NOTIFICATIONS ====================

def add_notification(db: Session, user_id: int, title: str, message: str,
                     type: models.NotificationType, data: Optional[Dict[str, Any]] = None,
                     priority: models.NotificationPriority = models.NotificationPriority.MEDIUM) -> models.Notification:
    """Stage a notification in the current transaction without committing."""
    notification = models.Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        data=data,
        priority=priority,
        read=False,
    )
    db.add(notification)
    return notification


def get_notifications(db: Session, user_id: int, unread_only: bool = False,
                      type: Optional[models.NotificationType] = None,
                      limit: int = 50, offset: int = 0) -> Tuple[List[models.Notification], int, int]:
    """Returns (page, total matching, unread total for the user)."""
    try:
        query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
        if unread_only:
            query = query.filter(models.Notification.read.is_(False))
        if type:
            query = query.filter(models.Notification.type == type)
        total = query.count()
        items = query.order_by(desc(models.Notification.created_at), desc(models.Notification.id)) \
            .offset(offset).limit(limit).all()
        unread = db.query(func.count(models.Notification.id)).filter(
            models.Notification.user_id == user_id,
            models.Notification.read.is_(False),
        ).scalar()
        return items, total, unread
    except SQLAlchemyError as e:
        logger.error(f"Error fetching notifications for user {user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_notification(db: Session, notification_id: int) -> Optional[models.Notification]:
    return db.get(models.Notification, notification_id)


def mark_notification_read(db: Session, notification: models.Notification) -> models.Notification:
    try:
        notification.read = True
        db.commit()
        db.refresh(notification)
        return notification
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error marking notification {notification.id} read: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def delete_notification(db: Session, notification: models.Notification) -> None:
    try:
        db.delete(notification)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting notification {notification.id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def mark_all_notifications_read(db: Session, user_id: int) -> int:
    """Mark every unread notification of one user as read; returns the count."""
    try:
        count = db.query(models.Notification).filter(
            models.Notification.user_id == user_id,
            models.Notification.read.is_(False),
        ).update({models.Notification.read: True}, synchronize_session=False)
        db.commit()
        return count
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error marking notifications read for user {user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== REMEDY TEMPLATES ====================

def get_remedy_templates(db: Session, type: Optional[models.RemedyType] = None, category: Optional[str] = None,
                         language: Optional[str] = None, is_active: Optional[bool] = True,
                         search: Optional[str] = None) -> List[models.RemedyTemplate]:
    try:
        query = db.query(models.RemedyTemplate)
        if type:
            query = query.filter(models.RemedyTemplate.type == type)
        if category:
            query = query.filter(models.RemedyTemplate.category == category)
        if language:
            query = query.filter(models.RemedyTemplate.language == language)
        if is_active is not None:
            query = query.filter(models.RemedyTemplate.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                models.RemedyTemplate.name.ilike(pattern),
                models.RemedyTemplate.description.ilike(pattern),
                models.RemedyTemplate.category.ilike(pattern),
            ))
        return query.order_by(models.RemedyTemplate.name).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching remedy templates: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_remedy_template(db: Session, template_id: int) -> Optional[models.RemedyTemplate]:
    return db.get(models.RemedyTemplate, template_id)


def create_remedy_template(db: Session, template: schemas.RemedyTemplateCreate) -> models.RemedyTemplate:
    try:
        db_template = models.RemedyTemplate(**template.model_dump())
        db.add(db_template)
        db.flush()
        return db_template
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating remedy template: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def update_remedy_template(db: Session, db_template: models.RemedyTemplate,
                           update: schemas.RemedyTemplateUpdate) -> models.RemedyTemplate:
    for key, value in update.model_dump(exclude_unset=True).items():
        setattr(db_template, key, value)
    return db_template


def count_template_documents(db: Session, template_id: int) -> int:
    return db.query(func.count(models.RemedyDocument.id)).filter(
        models.RemedyDocument.template_id == template_id
    ).scalar()


# ==================== REMEDY DOCUMENTS ====================

def get_user_remedies(db: Session, user_id: int) -> List[models.RemedyDocument]:
    try:
        return db.query(models.RemedyDocument).options(
            joinedload(models.RemedyDocument.template),
            joinedload(models.RemedyDocument.consultation_session).joinedload(models.ConsultationSession.guruji),
        ).filter(models.RemedyDocument.user_id == user_id).order_by(
            desc(models.RemedyDocument.created_at), desc(models.RemedyDocument.id)
        ).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching remedies for user {user_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_remedy_document(db: Session, document_id: int) -> Optional[models.RemedyDocument]:
    return db.query(models.RemedyDocument).options(
        joinedload(models.RemedyDocument.template),
        joinedload(models.RemedyDocument.consultation_session).joinedload(models.ConsultationSession.guruji),
    ).filter(models.RemedyDocument.id == document_id).first()


def serialize_user_remedy(document: models.RemedyDocument) -> schemas.UserRemedyResponse:
    session = document.consultation_session
    template = document.template
    return schemas.UserRemedyResponse(
        id=document.id,
        template_name=template.name,
        template_type=template.type,
        guruji_name=session.guruji.name if session and session.guruji else "Guruji",
        consultation_date=session.start_time if session else None,
        status="ACTIVE",
        instructions=template.instructions,
        dosage=template.dosage,
        duration=template.duration,
        custom_instructions=document.custom_instructions,
        custom_dosage=document.custom_dosage,
        custom_duration=document.custom_duration,
        pdf_url=f"/api/user/remedies/{document.id}/pdf" if document.pdf_content else None,
        email_sent=document.email_sent,
        sms_sent=document.sms_sent,
        delivered_at=document.delivered_at,
        created_at=document.created_at,
    )


# ==================== QUEUE LISTINGS ====================

def get_open_queue_entries(db: Session, guruji_id: Optional[int] = None,
                           status: Optional[models.QueueStatus] = None) -> List[models.QueueEntry]:
    try:
        query = db.query(models.QueueEntry).options(
            joinedload(models.QueueEntry.user),
            joinedload(models.QueueEntry.guruji),
        )
        if status:
            query = query.filter(models.QueueEntry.status == status)
        else:
            query = query.filter(models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES))
        if guruji_id:
            query = query.filter(models.QueueEntry.guruji_id == guruji_id)
        return query.order_by(models.QueueEntry.guruji_id, models.QueueEntry.position,
                              models.QueueEntry.id).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching queue entries: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== AUDIT LOGS ====================

def get_audit_logs(db: Session, skip: int = 0, limit: int = 100, user_id: Optional[int] = None,
                   action: Optional[str] = None, resource: Optional[str] = None) -> Tuple[List[models.AuditLog], int]:
    try:
        query = db.query(models.AuditLog)
        if user_id:
            query = query.filter(models.AuditLog.user_id == user_id)
        if action:
            query = query.filter(models.AuditLog.action == action)
        if resource:
            query = query.filter(models.AuditLog.resource == resource)
        total = query.count()
        logs = query.order_by(desc(models.AuditLog.created_at), desc(models.AuditLog.id)) \
            .offset(skip).limit(limit).all()
        return logs, total
    except SQLAlchemyError as e:
        logger.error(f"Error fetching audit logs: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== DASHBOARDS ====================

def get_coordinator_dashboard(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Same-day counts and a per-Guruji queue summary; recomputed on every call."""
    try:
        day_start, day_end = local_day_bounds(now=now)
        today = (models.Appointment.date >= day_start, models.Appointment.date < day_end)

        total_today = db.query(func.count(models.Appointment.id)).filter(*today).scalar()
        checked_in_today = db.query(func.count(models.QueueEntry.id)).filter(
            models.QueueEntry.checked_in_at >= day_start,
            models.QueueEntry.checked_in_at < day_end,
        ).scalar()
        completed_today = db.query(func.count(models.ConsultationSession.id)).filter(
            models.ConsultationSession.start_time >= day_start,
            models.ConsultationSession.start_time < day_end,
            models.ConsultationSession.end_time.isnot(None),
        ).scalar()
        waiting = db.query(func.count(models.QueueEntry.id)).filter(
            models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES)
        ).scalar()
        pending = db.query(func.count(models.Appointment.id)).filter(
            models.Appointment.status == models.AppointmentStatus.BOOKED
        ).scalar()
        cancellations = db.query(func.count(models.Appointment.id)).filter(
            *today, models.Appointment.status == models.AppointmentStatus.CANCELLED
        ).scalar()

        upcoming = db.query(models.Appointment).options(joinedload(models.Appointment.guruji)).filter(
            *today,
            models.Appointment.status.in_([
                models.AppointmentStatus.BOOKED,
                models.AppointmentStatus.CONFIRMED,
                models.AppointmentStatus.CHECKED_IN,
            ]),
        ).order_by(models.Appointment.date).limit(10).all()

        grouped = db.query(
            models.QueueEntry.guruji_id, models.QueueEntry.status, func.count(models.QueueEntry.id)
        ).filter(
            models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES)
        ).group_by(models.QueueEntry.guruji_id, models.QueueEntry.status).all()

        summary: Dict[int, Dict[str, Any]] = {}
        for guruji_id, status, count in grouped:
            item = summary.setdefault(guruji_id, {"waiting_count": 0, "in_progress_count": 0})
            if status == models.QueueStatus.WAITING:
                item["waiting_count"] = count
            else:
                item["in_progress_count"] = count

        names = dict(db.query(models.User.id, models.User.name).filter(
            models.User.id.in_(list(summary.keys()))
        ).all()) if summary else {}

        queue_summary = [
            {
                "guruji_id": guruji_id,
                "guruji_name": names.get(guruji_id, "Unknown"),
                "waiting_count": counts["waiting_count"],
                "in_progress_count": counts["in_progress_count"],
                # Rough figure: 30 minutes per waiting visitor
                "average_wait_time": counts["waiting_count"] * 30,
            }
            for guruji_id, counts in sorted(summary.items())
        ]

        return {
            "stats": {
                "total_appointments_today": total_today,
                "checked_in_today": checked_in_today,
                "completed_today": completed_today,
                "waiting_in_queue": waiting,
                "pending_approvals": pending,
            },
            "upcoming_appointments": upcoming,
            "queue_summary": queue_summary,
            "today_stats": {
                "appointments": total_today,
                "checkins": checked_in_today,
                "completions": completed_today,
                "cancellations": cancellations,
            },
        }
    except SQLAlchemyError as e:
        logger.error(f"Error building coordinator dashboard: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def get_admin_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    try:
        now = now or utcnow()
        total_users = db.query(func.count(models.User.id)).scalar()
        total_appointments = db.query(func.count(models.Appointment.id)).scalar()
        total_remedies = db.query(func.count(models.RemedyTemplate.id)).filter(
            models.RemedyTemplate.is_active.is_(True)
        ).scalar()
        active_queues = db.query(func.count(models.QueueEntry.id)).filter(
            models.QueueEntry.status.in_(models.ACTIVE_QUEUE_STATUSES)
        ).scalar()
        recent_cancellations = db.query(func.count(models.Appointment.id)).filter(
            models.Appointment.status == models.AppointmentStatus.CANCELLED,
            func.coalesce(models.Appointment.updated_at, models.Appointment.created_at) >= now - timedelta(hours=24),
        ).scalar()

        if recent_cancellations > 10:
            system_health = "critical"
        elif recent_cancellations > 5 or active_queues > 20:
            system_health = "warning"
        else:
            system_health = "healthy"

        recent_activity = db.query(models.AuditLog).order_by(
            desc(models.AuditLog.created_at), desc(models.AuditLog.id)
        ).limit(10).all()

        return {
            "total_users": total_users,
            "total_appointments": total_appointments,
            "total_remedies": total_remedies,
            "active_queues": active_queues,
            "system_health": system_health,
            "recent_activity": recent_activity,
        }
    except SQLAlchemyError as e:
        logger.error(f"Error building admin stats: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
