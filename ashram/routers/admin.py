# ashram/routers/admin.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import ValidationError
from ..responses import paginated_response, success_response

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)


@router.get("/queue")
def read_all_queues(
    guruji_id: Optional[int] = Query(None, alias="gurujiId"),
    status: Optional[models.QueueStatus] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_QUEUES)),
):
    try:
        entries = crud.get_open_queue_entries(db, guruji_id=guruji_id, status=status)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response([schemas.QueueEntryResponse.model_validate(e) for e in entries])


@router.get("/appointments")
def read_all_appointments(
    status: Optional[models.AppointmentStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.MANAGE_APPOINTMENTS)),
):
    """Every appointment, newest booking first; search matches reason, notes or reference code."""
    try:
        items, total = crud.get_staff_appointments(db, status=status, search=search, limit=limit, offset=offset)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response({
        "appointments": [schemas.StaffAppointmentResponse.model_validate(a) for a in items],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(items) < total,
        },
    })


@router.get("/audit-logs")
def read_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[int] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_AUDIT_LOGS)),
):
    """Audit trail, newest first. Administrators only."""
    try:
        logs, total = crud.get_audit_logs(db, skip=(page - 1) * limit, limit=limit,
                                          user_id=user_id, action=action, resource=resource)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return paginated_response([schemas.AuditLogResponse.model_validate(log) for log in logs], total, page, limit)
