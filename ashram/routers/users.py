# ashram/routers/users.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..audit_logger import audit_trail
from ..database import get_db
from ..errors import NotFoundError, ValidationError
from ..responses import paginated_response, success_response

router = APIRouter(
    prefix="/admin/users",
    tags=["Users"],
    dependencies=[Depends(security.require_capability(security.Capability.MANAGE_USERS))],
    responses={404: {"description": "Not found"}},
)

patients_router = APIRouter(
    prefix="/guruji",
    tags=["Guruji"],
    responses={404: {"description": "Not found"}},
)


def _get_user_or_404(db: Session, user_id: int) -> models.User:
    db_user = crud.get_user(db, user_id=user_id)
    if not db_user:
        raise NotFoundError("User not found")
    return db_user


@router.get("")
def read_all_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[models.UserRole] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    db: Session = Depends(get_db),
):
    try:
        users, total = crud.get_users(db, skip=(page - 1) * limit, limit=limit, role=role, is_active=is_active)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return paginated_response([schemas.UserResponse.model_validate(u) for u in users], total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_user(
    user: schemas.UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.User = Depends(security.get_current_user),
):
    try:
        new_user = crud.create_user(db=db, user=user)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    audit_trail.record(db, current_admin.id, "CREATE_USER", "USER", new_user.id,
                       new_data=user.model_dump(exclude={"password"}), request=request)
    db.commit()
    db.refresh(new_user)
    return success_response(schemas.UserResponse.model_validate(new_user), message="User created",
                            status_code=status.HTTP_201_CREATED)


@router.get("/{user_id}")
def read_user(user_id: int, db: Session = Depends(get_db)):
    db_user = _get_user_or_404(db, user_id)
    detail = schemas.UserDetailResponse(
        **schemas.UserResponse.model_validate(db_user).model_dump(),
        updated_at=db_user.updated_at,
        counts=schemas.UserActivityCounts(**crud.get_user_activity_counts(db, db_user.id)),
        recent_appointments=[schemas.AppointmentBrief.model_validate(a)
                             for a in crud.get_recent_appointments(db, db_user.id)],
    )
    return success_response(detail)


@router.put("/{user_id}")
def update_user(
    user_id: int,
    update: schemas.UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.User = Depends(security.get_current_user),
):
    db_user = _get_user_or_404(db, user_id)
    if db_user.id == current_admin.id and (
        update.is_active is False or (update.role is not None and update.role != models.UserRole.ADMIN)
    ):
        raise ValidationError("You cannot deactivate or demote your own account")

    old_data = {"name": db_user.name, "email": db_user.email, "phone": db_user.phone,
                "role": db_user.role.value, "isActive": db_user.is_active}
    try:
        db_user = crud.update_user(db, db_user, update)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    audit_trail.record(db, current_admin.id, "UPDATE_USER", "USER", db_user.id,
                       old_data=old_data, new_data=update.model_dump(exclude_unset=True, exclude={"password"}),
                       request=request)
    db.commit()
    db.refresh(db_user)
    return success_response(schemas.UserResponse.model_validate(db_user), message="User updated successfully")


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.User = Depends(security.get_current_user),
):
    """Hard delete when nothing references the user; otherwise deactivate."""
    db_user = _get_user_or_404(db, user_id)
    if db_user.id == current_admin.id:
        raise ValidationError("You cannot delete your own account")

    old_data = {"name": db_user.name, "email": db_user.email, "role": db_user.role.value}
    try:
        if crud.user_has_history(db, db_user.id):
            crud.set_user_active(db, db_user, False)
            action, message = "deactivated", "User deactivated (cannot delete - has associated data)"
            audit_trail.record(db, current_admin.id, "DEACTIVATE_USER", "USER", user_id,
                               old_data=old_data, new_data={"isActive": False}, request=request)
        else:
            crud.delete_user(db, db_user)
            action, message = "deleted", "User deleted successfully"
            audit_trail.record(db, current_admin.id, "DELETE_USER", "USER", user_id,
                               old_data=old_data, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    db.commit()
    return success_response({"id": user_id, "action": action}, message=message)


@router.patch("/{user_id}/status")
def update_user_status(
    user_id: int,
    payload: schemas.UserStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.User = Depends(security.get_current_user),
):
    db_user = _get_user_or_404(db, user_id)
    if db_user.id == current_admin.id and not payload.is_active:
        raise ValidationError("You cannot deactivate your own account")

    old_active = db_user.is_active
    try:
        db_user = crud.set_user_active(db, db_user, payload.is_active)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    audit_trail.record(db, current_admin.id, "UPDATE_USER_STATUS", "USER", db_user.id,
                       old_data={"isActive": old_active}, new_data={"isActive": db_user.is_active},
                       request=request)
    db.commit()
    db.refresh(db_user)
    return success_response(schemas.UserResponse.model_validate(db_user))


@patients_router.get("/patients")
def read_guruji_patients(
    guruji_id: Optional[int] = Query(None, alias="gurujiId"),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_PATIENTS)),
):
    """Visitors who have booked with a Guruji. A Guruji sees their own; an admin picks one with gurujiId."""
    if current_user.role == models.UserRole.GURUJI:
        guruji_id = current_user.id
    elif guruji_id is None:
        raise ValidationError("gurujiId is required")

    try:
        rows = crud.get_guruji_patients(db, guruji_id, search=search, limit=limit)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    patients = [
        schemas.GurujiPatientResponse(
            id=row["patient"].id,
            name=row["patient"].name,
            email=row["patient"].email,
            phone=row["patient"].phone,
            last_appointment=schemas.AppointmentBrief.model_validate(row["last_appointment"])
            if row["last_appointment"] else None,
            in_queue=row["in_queue"],
        )
        for row in rows
    ]
    return success_response({"patients": patients, "total": len(patients)})
