# Seeds the default Guruji, the admin account and starter remedy templates on startup.
import logging

from sqlalchemy.exc import SQLAlchemyError

from . import models
from .config import get_settings
from .database import SessionLocal

logger = logging.getLogger(__name__)

STARTER_TEMPLATES = [
    {
        "name": "Morning Meditation",
        "type": models.RemedyType.SPIRITUAL,
        "category": "Meditation",
        "description": "Daily breath-focused meditation practice.",
        "instructions": "Sit quietly after waking and follow the breath for the full session.",
        "dosage": "20 minutes",
        "duration": "21 days",
        "tags": ["meditation", "morning"],
    },
    {
        "name": "Tulsi Infusion",
        "type": models.RemedyType.AYURVEDIC,
        "category": "Herbal",
        "description": "Holy basil infusion for general wellbeing.",
        "instructions": "Steep fresh tulsi leaves in hot water for five minutes and drink warm.",
        "dosage": "1 cup twice daily",
        "duration": "14 days",
        "tags": ["herbal", "immunity"],
    },
    {
        "name": "Sattvic Diet",
        "type": models.RemedyType.DIETARY,
        "category": "Diet",
        "description": "Light vegetarian diet of fresh, seasonal food.",
        "instructions": "Favour fresh fruit, vegetables, whole grains and milk; avoid onion, garlic and stale food.",
        "duration": "30 days",
        "tags": ["diet"],
    },
]


def create_initial_data():
    """Creates the default Guruji and starter remedy templates if they don't exist.

    With DEFAULT_GURUJI_PASSWORD set, the Guruji account also gets that password.
    """
    from .security import get_password_hash, verify_password

    settings = get_settings()
    password = settings.default_guruji_password
    db = SessionLocal()
    try:
        guruji = db.query(models.User).filter(models.User.email == settings.default_guruji_email).first()
        if not guruji:
            db.add(models.User(
                name=settings.default_guruji_name,
                email=settings.default_guruji_email,
                password_hash=get_password_hash(password) if password else None,
                role=models.UserRole.GURUJI,
                is_active=True,
            ))
            logger.info(f"Default Guruji '{settings.default_guruji_name}' created.")
            if not password:
                logger.warning("DEFAULT_GURUJI_PASSWORD not set. The default Guruji cannot log in yet.")
        elif password and not verify_password(password, guruji.password_hash):
            guruji.password_hash = get_password_hash(password)
            logger.info("Default Guruji password updated to match configuration.")

        if db.query(models.RemedyTemplate).count() == 0:
            for template in STARTER_TEMPLATES:
                db.add(models.RemedyTemplate(**template))
            logger.info(f"{len(STARTER_TEMPLATES)} starter remedy templates created.")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"CRITICAL: Error during initial data creation: {e}")
    finally:
        db.close()


def create_or_update_admin():
    """Ensures the admin account from ADMIN_DEFAULT_EMAIL / ADMIN_DEFAULT_PASSWORD exists."""
    from .security import get_password_hash, verify_password

    settings = get_settings()
    if not settings.admin_default_password:
        logger.warning("ADMIN_DEFAULT_PASSWORD not set. Skipping admin user setup.")
        return

    db = SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.email == settings.admin_default_email).first()
        if admin:
            admin.role = models.UserRole.ADMIN
            admin.is_active = True
            # Only rehash when the configured password changed
            if not verify_password(settings.admin_default_password, admin.password_hash):
                admin.password_hash = get_password_hash(settings.admin_default_password)
                logger.info("Admin user password updated to match configuration.")
        else:
            db.add(models.User(
                name="Administrator",
                email=settings.admin_default_email,
                password_hash=get_password_hash(settings.admin_default_password),
                role=models.UserRole.ADMIN,
                is_active=True,
            ))
            logger.info("Admin user created on startup.")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"CRITICAL: Error during admin user initialization: {e}")
    finally:
        db.close()
