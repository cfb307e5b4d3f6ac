# ashram/routers/dashboard.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..database import get_db
from ..errors import ValidationError
from ..responses import success_response

router = APIRouter(
    tags=["Dashboard"],
    responses={404: {"description": "Not found"}},
)


@router.get("/coordinator/dashboard")
def read_coordinator_dashboard(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(
        security.require_capability(security.Capability.VIEW_COORDINATOR_DASHBOARD)
    ),
):
    try:
        data = crud.get_coordinator_dashboard(db)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response(schemas.CoordinatorDashboardResponse(
        stats=schemas.CoordinatorStats(**data["stats"]),
        upcoming_appointments=[schemas.AppointmentResponse.model_validate(a)
                               for a in data["upcoming_appointments"]],
        queue_summary=[schemas.QueueSummaryItem(**item) for item in data["queue_summary"]],
        today_stats=schemas.TodayStats(**data["today_stats"]),
    ))


@router.get("/admin/dashboard/stats")
def read_admin_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_ADMIN_DASHBOARD)),
):
    try:
        data = crud.get_admin_stats(db)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    data["recent_activity"] = [schemas.AuditLogResponse.model_validate(log) for log in data["recent_activity"]]
    return success_response(schemas.AdminStatsResponse(**data))
