import logging
from io import BytesIO
from pathlib import Path
from typing import Optional

import jinja2
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from xhtml2pdf import pisa

from .. import crud, models, schemas
from ..audit_logger import audit_trail
from ..config import get_settings
from ..errors import NotFoundError, ValidationError
from ..timeutils import to_local, utcnow
from .delivery_service import delivery_service
from .notification_service import notify

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

template_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=jinja2.select_autoescape(["html"]),
)


def render_remedy_pdf(document: models.RemedyDocument, template: models.RemedyTemplate,
                      guruji: models.User, patient: models.User) -> Optional[bytes]:
    html = template_env.get_template("remedy_document.html").render(
        document=document,
        template=template,
        guruji=guruji,
        patient=patient,
        issued_on=to_local(utcnow()).strftime("%d %B %Y"),
        app_name=get_settings().app_name,
    )
    pdf_io = BytesIO()
    result = pisa.CreatePDF(src=html, dest=pdf_io)
    if result.err:
        logger.error(f"PDF rendering failed for remedy document {document.id}")
        return None
    return pdf_io.getvalue()


def _active_session(db: Session, patient_id: int, guruji_id: int) -> Optional[models.ConsultationSession]:
    return db.query(models.ConsultationSession).filter(
        models.ConsultationSession.patient_id == patient_id,
        models.ConsultationSession.guruji_id == guruji_id,
        models.ConsultationSession.end_time.is_(None),
    ).order_by(models.ConsultationSession.start_time.desc()).first()


def prescribe(db: Session, guruji: models.User, payload: schemas.PrescribeRemedyRequest,
              request: Optional[Request] = None) -> models.RemedyDocument:
    """Instantiate a template for a patient inside the current (or a new) consultation."""
    template = crud.get_remedy_template(db, payload.template_id)
    if template is None or not template.is_active:
        raise NotFoundError("Remedy template not found")
    patient = crud.get_user(db, payload.patient_id)
    if patient is None:
        raise NotFoundError("Patient not found")
    if patient.id == guruji.id:
        raise ValidationError("Cannot prescribe a remedy to yourself")

    now = utcnow()
    try:
        session = _active_session(db, patient.id, guruji.id)
        if session is None:
            session = models.ConsultationSession(
                patient_id=patient.id,
                guruji_id=guruji.id,
                start_time=now,
                notes="Created for remedy prescription",
            )
            db.add(session)
            db.flush()

        document = models.RemedyDocument(
            consultation_session_id=session.id,
            template_id=template.id,
            user_id=patient.id,
            custom_instructions=payload.custom_instructions,
            custom_dosage=payload.custom_dosage,
            custom_duration=payload.custom_duration,
        )
        db.add(document)
        db.flush()

        document.pdf_content = render_remedy_pdf(document, template, guruji, patient)

        message = f"{guruji.name} has prescribed a new remedy: {template.name}"
        if payload.send_email:
            document.email_sent = delivery_service.send_email(patient.email, "New Remedy Prescribed", message)
        if payload.send_sms:
            document.sms_sent = delivery_service.send_sms(patient.phone, message)
        if document.email_sent or document.sms_sent:
            document.delivered_at = now

        notify(
            db, patient.id, "New Remedy Prescribed", message, models.NotificationType.remedy,
            data={"remedyDocumentId": document.id, "templateId": template.id},
        )
        audit_trail.record(
            db, guruji.id, "PRESCRIBE_REMEDY", "REMEDY_DOCUMENT", document.id,
            new_data={"templateId": template.id, "patientId": patient.id,
                      "consultationSessionId": session.id},
            request=request,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error prescribing template {payload.template_id} to {payload.patient_id}: {e}")
        raise crud.CRUDError(f"Database error: {str(e)}")

    db.refresh(document)
    logger.info(f"Remedy {document.id} prescribed by {guruji.id} to {patient.id}")
    return document
