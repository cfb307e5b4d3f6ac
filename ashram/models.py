# ashram/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    Enum as SQLAlchemyEnum, Boolean, LargeBinary, JSON, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


class UserRole(str, enum.Enum):
    USER = "USER"
    COORDINATOR = "COORDINATOR"
    GURUJI = "GURUJI"
    ADMIN = "ADMIN"


class AppointmentStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Priority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class QueueStatus(str, enum.Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class RemedyType(str, enum.Enum):
    HOMEOPATHIC = "HOMEOPATHIC"
    AYURVEDIC = "AYURVEDIC"
    SPIRITUAL = "SPIRITUAL"
    LIFESTYLE = "LIFESTYLE"
    DIETARY = "DIETARY"


class NotificationType(str, enum.Enum):
    appointment = "appointment"
    remedy = "remedy"
    queue = "queue"
    system = "system"
    reminder = "reminder"
    checkin = "checkin"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING, QueueStatus.IN_PROGRESS)
CHECKIN_ELIGIBLE_STATUSES = (AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED)
SLOT_OCCUPYING_STATUSES = (
    AppointmentStatus.BOOKED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CHECKED_IN,
    AppointmentStatus.IN_PROGRESS,
)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index('idx_users_role_active', 'role', 'is_active'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(20), unique=True, index=True, nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(SQLAlchemyEnum(UserRole, name='user_role'), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="user", foreign_keys="Appointment.user_id")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_guruji_date', 'guruji_id', 'date'),
        Index('idx_appointments_user_status', 'user_id', 'status'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guruji_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'),
                    default=AppointmentStatus.BOOKED, nullable=False)
    priority = Column(SQLAlchemyEnum(Priority, name='priority'), default=Priority.NORMAL, nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurring_pattern = Column(String(50), nullable=True)
    reference_code = Column(String(12), unique=True, index=True, nullable=True)
    qr_code = Column(Text, nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="appointments", foreign_keys=[user_id])
    guruji = relationship("User", foreign_keys=[guruji_id])
    queue_entry = relationship("QueueEntry", back_populates="appointment", uselist=False)
    consultation_sessions = relationship("ConsultationSession", back_populates="appointment")


class QueueEntry(Base):
    __tablename__ = "queue_entries"
    __table_args__ = (
        Index('idx_queue_guruji_status_position', 'guruji_id', 'status', 'position'),
        Index('idx_queue_user_status', 'user_id', 'status'),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guruji_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(SQLAlchemyEnum(QueueStatus, name='queue_status'), default=QueueStatus.WAITING, nullable=False)
    # Label only: ordering is FIFO by position.
    priority = Column(SQLAlchemyEnum(Priority, name='priority'), default=Priority.NORMAL, nullable=False)
    estimated_wait = Column(Integer, nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    appointment = relationship("Appointment", back_populates="queue_entry")
    user = relationship("User", foreign_keys=[user_id])
    guruji = relationship("User", foreign_keys=[guruji_id])


class ConsultationSession(Base):
    __tablename__ = "consultation_sessions"
    __table_args__ = (
        Index('idx_consultation_patient_guruji', 'patient_id', 'guruji_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guruji_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)
    symptoms = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", back_populates="consultation_sessions")
    patient = relationship("User", foreign_keys=[patient_id])
    guruji = relationship("User", foreign_keys=[guruji_id])
    remedies = relationship("RemedyDocument", back_populates="consultation_session")


class RemedyTemplate(Base):
    __tablename__ = "remedy_templates"
    __table_args__ = (
        Index('idx_remedy_templates_type_active', 'type', 'is_active'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    type = Column(SQLAlchemyEnum(RemedyType, name='remedy_type'), nullable=False)
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=False)
    dosage = Column(String(200), nullable=True)
    duration = Column(String(100), nullable=True)
    language = Column(String(10), default="en", nullable=False)
    tags = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    documents = relationship("RemedyDocument", back_populates="template")


class RemedyDocument(Base):
    __tablename__ = "remedy_documents"
    __table_args__ = (
        Index('idx_remedy_documents_user', 'user_id', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    consultation_session_id = Column(Integer, ForeignKey("consultation_sessions.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("remedy_templates.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    custom_instructions = Column(Text, nullable=True)
    custom_dosage = Column(String(200), nullable=True)
    custom_duration = Column(String(100), nullable=True)
    pdf_content = Column(LargeBinary, nullable=True)
    email_sent = Column(Boolean, default=False, nullable=False)
    sms_sent = Column(Boolean, default=False, nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    consultation_session = relationship("ConsultationSession", back_populates="remedies")
    template = relationship("RemedyTemplate", back_populates="documents")
    user = relationship("User", foreign_keys=[user_id])


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'read'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(SQLAlchemyEnum(NotificationType, name='notification_type'), nullable=False)
    priority = Column(SQLAlchemyEnum(NotificationPriority, name='notification_priority'),
                      default=NotificationPriority.MEDIUM, nullable=False)
    data = Column(JSON, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    email_sent = Column(Boolean, default=False, nullable=False)
    sms_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="notifications")


class AuditLog(Base):
    """Append-only record of state changes."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_user_created', 'user_id', 'created_at'),
        Index('idx_audit_resource', 'resource', 'resource_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(50), nullable=False)
    resource = Column(String(50), nullable=False)
    resource_id = Column(Integer, nullable=True)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User")
