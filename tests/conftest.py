"""
Test configuration and fixtures.

Provides:
- A fresh SQLite schema per test
- JWT token minting for authenticated requests
- HTTPX AsyncClient bound to the ASGI app
"""
import os
import secrets
from datetime import datetime, timedelta
from typing import Generator, Optional

# Settings are read on first import of the package; configure before that.
os.environ["DATABASE_URL"] = "sqlite:///./test_ashram.db"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-jwt-signing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ASHRAM_TIMEZONE"] = "Asia/Kolkata"
os.environ.pop("REDIS_URL", None)

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from ashram import models
from ashram.database import SessionLocal, create_tables, drop_tables, get_db
from ashram.main import app
from ashram.monitoring import performance_monitor
from ashram.security import checkin_cooldown, create_user_token, get_password_hash
from ashram.timeutils import utcnow


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    drop_tables()
    create_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_in_memory_state():
    checkin_cooldown.reset()
    performance_monitor.clear()
    yield
    checkin_cooldown.reset()


@pytest.fixture(scope="function")
async def client(db: Session):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# =============================================================================
# Users
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    def _make(name: str = "Visitor", role: models.UserRole = models.UserRole.USER,
              email: Optional[str] = None, phone: Optional[str] = None,
              password: Optional[str] = None, is_active: bool = True) -> models.User:
        user = models.User(
            name=name,
            email=email or f"{secrets.token_hex(4)}@ashram.org",
            phone=phone,
            role=role,
            password_hash=get_password_hash(password) if password else None,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def guruji(make_user) -> models.User:
    return make_user("Guruji Ananda", models.UserRole.GURUJI)


@pytest.fixture
def visitor(make_user) -> models.User:
    return make_user("Meera", phone="+919800000001")


@pytest.fixture
def other_visitor(make_user) -> models.User:
    return make_user("Arjun")


@pytest.fixture
def coordinator(make_user) -> models.User:
    return make_user("Coordinator Sita", models.UserRole.COORDINATOR)


@pytest.fixture
def admin(make_user) -> models.User:
    return make_user("Admin", models.UserRole.ADMIN)


def auth_headers(user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


# =============================================================================
# Appointments
# =============================================================================

@pytest.fixture
def make_appointment(db: Session):
    def _make(user: models.User, guruji: models.User, when: Optional[datetime] = None,
              status: models.AppointmentStatus = models.AppointmentStatus.BOOKED) -> models.Appointment:
        when = when or utcnow() + timedelta(hours=1)
        appointment = models.Appointment(
            user_id=user.id,
            guruji_id=guruji.id,
            date=when,
            start_time=when,
            end_time=when + timedelta(minutes=30),
            status=status,
            priority=models.Priority.NORMAL,
            reference_code=secrets.token_hex(4).upper(),
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    return _make
