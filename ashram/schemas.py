# ashram/schemas.py
from datetime import datetime, date
from typing import List, Optional, Dict, Any, Annotated

from pydantic import BaseModel, Field, EmailStr, AfterValidator, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import (
    UserRole, AppointmentStatus, Priority, QueueStatus, RemedyType,
    NotificationType, NotificationPriority,
)
from .timeutils import as_utc

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


# --- Base Schemas ---
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


# --- Users ---
class UserSummary(BaseSchema):
    id: int
    name: str


class UserBase(BaseSchema):
    name: str = Field(..., min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)


class UserCreate(UserBase):
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    role: UserRole = UserRole.USER

    @model_validator(mode="after")
    def require_contact(self):
        if not self.email and not self.phone:
            raise ValueError("Either email or phone is required")
        return self


class UserStatusUpdate(BaseSchema):
    is_active: bool


class UserUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

    @field_validator("name", "role", "is_active")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class UserResponse(UserBase):
    id: int
    role: UserRole
    is_active: bool
    created_at: Optional[UTCDateTime] = None


class AppointmentBrief(BaseSchema):
    id: int
    date: UTCDateTime
    status: AppointmentStatus
    priority: Priority


class UserActivityCounts(BaseSchema):
    appointments: int
    consultation_sessions: int
    remedy_documents: int
    notifications: int


class UserDetailResponse(UserResponse):
    updated_at: Optional[UTCDateTime] = None
    counts: UserActivityCounts
    recent_appointments: List[AppointmentBrief]


class GurujiPatientResponse(BaseSchema):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    last_appointment: Optional[AppointmentBrief] = None
    in_queue: bool = False


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# --- Appointments ---
class AppointmentCreate(BaseSchema):
    guruji_id: Optional[int] = None
    date: datetime
    reason: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=2000)
    priority: Priority = Priority.NORMAL
    is_recurring: bool = False
    recurring_pattern: Optional[str] = Field(None, max_length=50)


class AppointmentResponse(BaseSchema):
    id: int
    user_id: int
    guruji_id: int
    guruji: Optional[UserSummary] = None
    date: UTCDateTime
    start_time: UTCDateTime
    end_time: UTCDateTime
    status: AppointmentStatus
    priority: Priority
    reason: Optional[str] = None
    notes: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: Optional[str] = None
    reference_code: Optional[str] = None
    qr_code: Optional[str] = None
    checked_in_at: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None


class StaffAppointmentResponse(AppointmentResponse):
    user: Optional[UserSummary] = None


class AppointmentReschedule(BaseSchema):
    date: datetime


class AvailabilityResponse(BaseSchema):
    date: date
    guruji_id: int
    slot_minutes: int
    available_slots: List[str]
    booked_slots: List[str]


# --- Check-in & Queue ---
class CheckInRequest(BaseSchema):
    appointment_id: int
    qr_data: Optional[str] = None


class ManualCheckInRequest(BaseSchema):
    appointment_code: str = Field(..., min_length=1, max_length=64)

    @field_validator("appointment_code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Appointment code is required")
        return v


class QueueEntryResponse(BaseSchema):
    id: int
    appointment_id: int
    user_id: int
    guruji_id: int
    position: int
    status: QueueStatus
    priority: Priority
    estimated_wait: Optional[int] = None
    checked_in_at: UTCDateTime
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None
    user: Optional[UserSummary] = None
    guruji: Optional[UserSummary] = None


class CheckInResponse(BaseSchema):
    queue_entry: QueueEntryResponse
    position: int
    estimated_wait: int
    message: str


class QueueUpdateRequest(BaseSchema):
    queue_entry_id: int
    status: QueueStatus
    notes: Optional[str] = Field(None, max_length=2000)


class QueueStats(BaseSchema):
    total_waiting: int
    average_wait_time: int
    currently_serving: Optional[str] = None
    people_ahead: int


class QueueStatusResponse(BaseSchema):
    queue_entry: Optional[QueueEntryResponse] = None
    stats: Optional[QueueStats] = None


# --- Notifications ---
class NotificationCreate(BaseSchema):
    user_id: int
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    type: NotificationType
    data: Optional[Dict[str, Any]] = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    send_email: bool = False
    send_sms: bool = False


class NotificationResponse(BaseSchema):
    id: int
    user_id: int
    title: str
    message: str
    type: NotificationType
    priority: NotificationPriority
    data: Optional[Dict[str, Any]] = None
    read: bool
    email_sent: bool
    sms_sent: bool
    created_at: Optional[UTCDateTime] = None


class NotificationListResponse(BaseSchema):
    notifications: List[NotificationResponse]
    total: int
    unread: int
    limit: int
    offset: int


# --- Remedies ---
class RemedyTemplateBase(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    type: RemedyType
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    instructions: str = Field(..., min_length=1)
    dosage: Optional[str] = Field(None, max_length=200)
    duration: Optional[str] = Field(None, max_length=100)
    language: str = Field("en", min_length=2, max_length=10)
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True


class RemedyTemplateCreate(RemedyTemplateBase):
    pass


class RemedyTemplateUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[RemedyType] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    instructions: Optional[str] = Field(None, min_length=1)
    dosage: Optional[str] = Field(None, max_length=200)
    duration: Optional[str] = Field(None, max_length=100)
    language: Optional[str] = Field(None, min_length=2, max_length=10)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("name", "type", "category", "instructions", "language", "is_active")
    @classmethod
    def reject_null(cls, v, info):
        # Omit a field to leave it unchanged; these columns are NOT NULL
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class RemedyTemplateResponse(RemedyTemplateBase):
    id: int
    tags: Optional[List[str]] = None
    created_at: Optional[UTCDateTime] = None


class PrescribeRemedyRequest(BaseSchema):
    template_id: int
    patient_id: int
    custom_instructions: Optional[str] = Field(None, max_length=4000)
    custom_dosage: Optional[str] = Field(None, max_length=200)
    custom_duration: Optional[str] = Field(None, max_length=100)
    send_email: bool = True
    send_sms: bool = False


class RemedyDocumentResponse(BaseSchema):
    id: int
    consultation_session_id: int
    template_id: int
    user_id: int
    custom_instructions: Optional[str] = None
    custom_dosage: Optional[str] = None
    custom_duration: Optional[str] = None
    pdf_url: Optional[str] = None
    email_sent: bool
    sms_sent: bool
    delivered_at: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None


class UserRemedyResponse(BaseSchema):
    id: int
    template_name: str
    template_type: RemedyType
    guruji_name: str
    consultation_date: Optional[UTCDateTime] = None
    status: str = "ACTIVE"
    instructions: str
    dosage: Optional[str] = None
    duration: Optional[str] = None
    custom_instructions: Optional[str] = None
    custom_dosage: Optional[str] = None
    custom_duration: Optional[str] = None
    pdf_url: Optional[str] = None
    email_sent: bool
    sms_sent: bool
    delivered_at: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None


# --- Dashboards ---
class CoordinatorStats(BaseSchema):
    total_appointments_today: int
    checked_in_today: int
    completed_today: int
    waiting_in_queue: int
    pending_approvals: int


class QueueSummaryItem(BaseSchema):
    guruji_id: int
    guruji_name: str
    waiting_count: int
    in_progress_count: int
    average_wait_time: int


class TodayStats(BaseSchema):
    appointments: int
    checkins: int
    completions: int
    cancellations: int


class CoordinatorDashboardResponse(BaseSchema):
    stats: CoordinatorStats
    upcoming_appointments: List[AppointmentResponse]
    queue_summary: List[QueueSummaryItem]
    today_stats: TodayStats


class AuditLogResponse(BaseSchema):
    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    resource_id: Optional[int] = None
    old_data: Optional[Any] = None
    new_data: Optional[Any] = None
    ip_address: Optional[str] = None
    created_at: Optional[UTCDateTime] = None


class AdminStatsResponse(BaseSchema):
    total_users: int
    total_appointments: int
    total_remedies: int
    active_queues: int
    system_health: str
    recent_activity: List[AuditLogResponse]
