# ashram/routers/remedies.py
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, schemas, models, security
from ..audit_logger import audit_trail
from ..database import get_db
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..responses import success_response
from ..services import remedy_service

import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/remedies",
    tags=["Remedies"],
    responses={404: {"description": "Not found"}},
)

user_router = APIRouter(
    prefix="/user/remedies",
    tags=["Remedies"],
    responses={404: {"description": "Not found"}},
)

require_remedy_manager = security.require_capability(security.Capability.MANAGE_REMEDIES)


def _get_template_or_404(db: Session, template_id: int) -> models.RemedyTemplate:
    template = crud.get_remedy_template(db, template_id)
    if template is None:
        raise NotFoundError("Remedy template not found")
    return template


# ==================== TEMPLATES ====================

@router.get("/templates")
def list_templates(
    type: Optional[models.RemedyType] = Query(None),
    category: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    active: Optional[bool] = Query(True),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        templates = crud.get_remedy_templates(db, type, category, language, active, search)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response([schemas.RemedyTemplateResponse.model_validate(t) for t in templates])


@router.post("/templates", status_code=status.HTTP_201_CREATED)
def create_template(
    template: schemas.RemedyTemplateCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_remedy_manager),
):
    try:
        created = crud.create_remedy_template(db, template)
        audit_trail.record(db, current_user.id, "CREATE_REMEDY_TEMPLATE", "REMEDY_TEMPLATE", created.id,
                           new_data=template.model_dump(), request=request)
        db.commit()
        db.refresh(created)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving remedy template: {e}")
        raise ValidationError(f"Database error: {str(e)}")
    return success_response(schemas.RemedyTemplateResponse.model_validate(created),
                            message="Remedy template created", status_code=status.HTTP_201_CREATED)


@router.get("/templates/{template_id}")
def read_template(
    template_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    return success_response(schemas.RemedyTemplateResponse.model_validate(_get_template_or_404(db, template_id)))


@router.put("/templates/{template_id}")
def update_template(
    template_id: int,
    update: schemas.RemedyTemplateUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_remedy_manager),
):
    template = _get_template_or_404(db, template_id)
    old_data = schemas.RemedyTemplateResponse.model_validate(template).model_dump()
    try:
        crud.update_remedy_template(db, template, update)
        audit_trail.record(db, current_user.id, "UPDATE_REMEDY_TEMPLATE", "REMEDY_TEMPLATE", template.id,
                           old_data=old_data, new_data=update.model_dump(exclude_unset=True), request=request)
        db.commit()
        db.refresh(template)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating remedy template {template_id}: {e}")
        raise ValidationError("Could not update remedy template")
    return success_response(schemas.RemedyTemplateResponse.model_validate(template),
                            message="Remedy template updated")


@router.delete("/templates/{template_id}")
def delete_template(
    template_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_remedy_manager),
):
    template = _get_template_or_404(db, template_id)
    in_use = crud.count_template_documents(db, template.id)
    if in_use:
        raise ValidationError(
            f"Cannot delete template: it is used by {in_use} prescribed remedies. Deactivate it instead.",
            code="TEMPLATE_IN_USE",
        )
    try:
        audit_trail.record(db, current_user.id, "DELETE_REMEDY_TEMPLATE", "REMEDY_TEMPLATE", template.id,
                           old_data={"name": template.name, "type": template.type.value}, request=request)
        db.delete(template)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting remedy template {template_id}: {e}")
        raise ValidationError(f"Database error: {str(e)}")
    return success_response({"id": template_id}, message="Remedy template deleted")


@router.post("/prescribe", status_code=status.HTTP_201_CREATED)
def prescribe_remedy(
    payload: schemas.PrescribeRemedyRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.PRESCRIBE_REMEDY)),
):
    try:
        document = remedy_service.prescribe(db, current_user, payload, request=request)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    response = schemas.RemedyDocumentResponse.model_validate(document)
    if document.pdf_content:
        response.pdf_url = f"/api/user/remedies/{document.id}/pdf"
    return success_response(response, message="Remedy prescribed successfully",
                            status_code=status.HTTP_201_CREATED)


# ==================== USER REMEDIES ====================

def _readable_document(db: Session, document_id: int, current_user: models.User) -> models.RemedyDocument:
    document = crud.get_remedy_document(db, document_id)
    if document is None:
        raise NotFoundError("Remedy not found")
    if document.user_id != current_user.id and not security.has_capability(
        current_user, security.Capability.VIEW_REMEDIES
    ):
        raise AuthorizationError("You can only view your own remedies")
    return document


@user_router.get("")
def list_my_remedies(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    try:
        documents = crud.get_user_remedies(db, current_user.id)
    except crud.CRUDError as e:
        raise ValidationError(str(e))
    return success_response([crud.serialize_user_remedy(d) for d in documents])


@user_router.get("/{document_id}")
def read_remedy(
    document_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    return success_response(crud.serialize_user_remedy(_readable_document(db, document_id, current_user)))


@user_router.get("/{document_id}/pdf")
def download_remedy_pdf(
    document_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.get_current_user),
):
    document = _readable_document(db, document_id, current_user)
    if not document.pdf_content:
        raise NotFoundError("PDF not available for this remedy")
    return StreamingResponse(BytesIO(document.pdf_content), media_type="application/pdf", headers={
        "Content-Disposition": f"inline; filename=remedy_{document.id}.pdf"
    })
