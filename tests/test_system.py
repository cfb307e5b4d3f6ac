import pytest
from httpx import AsyncClient

from ashram import models
from ashram.config import get_settings
from ashram.errors import RateLimitError
from ashram.security import (
    Capability, CheckInCooldown, create_access_token, has_capability, verify_token,
)
from ashram.seed import create_initial_data

from conftest import auth_headers


@pytest.mark.asyncio
async def test_health_is_public(client: AsyncClient):
    response = await client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "healthy"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"


@pytest.mark.asyncio
async def test_metrics_require_admin(client: AsyncClient, admin, coordinator):
    await client.get("/api/health")

    forbidden = await client.get("/api/metrics", headers=auth_headers(coordinator))
    assert forbidden.status_code == 403

    response = await client.get("/api/metrics", params={"type": "performance"}, headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "performance"
    assert "system" not in body
    assert body["performance"]["totalRequests"] >= 1


@pytest.mark.asyncio
async def test_api_docs_are_admin_only(client: AsyncClient, admin, visitor):
    assert (await client.get("/api/docs", headers=auth_headers(visitor))).status_code == 403

    response = await client.get("/api/docs", headers=auth_headers(admin))
    assert response.status_code == 200
    assert "/api/checkin" in response.json()["paths"]


@pytest.mark.asyncio
async def test_responses_carry_timing_and_security_headers(client: AsyncClient):
    response = await client.get("/api/health")

    assert response.headers["x-response-time"].endswith("ms")
    assert response.headers["x-content-type-options"] == "nosniff"


@pytest.mark.asyncio
async def test_missing_token_uses_error_envelope(client: AsyncClient):
    response = await client.get("/api/notifications")

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "AUTHENTICATION_ERROR"
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    response = await client.get("/api/nowhere")

    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_request_validation_is_400(client: AsyncClient, visitor):
    response = await client.post("/api/checkin", json={"appointmentId": "abc"}, headers=auth_headers(visitor))

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"][0]["field"] == "appointmentId"


@pytest.mark.asyncio
async def test_inactive_user_is_rejected(client: AsyncClient, make_user):
    user = make_user("Dormant", is_active=False)

    response = await client.get("/api/auth/me", headers=auth_headers(user))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_login_with_email_or_phone(client: AsyncClient, make_user):
    make_user("Seeker", email="seeker@ashram.org", phone="+919811111111", password="om-shanti-123")

    by_email = await client.post("/api/auth/token", data={"username": "seeker@ashram.org",
                                                          "password": "om-shanti-123"})
    assert by_email.status_code == 200
    token = by_email.json()["access_token"]
    assert verify_token(token)["role"] == "USER"

    by_phone = await client.post("/api/auth/token", data={"username": "+919811111111",
                                                          "password": "om-shanti-123"})
    assert by_phone.status_code == 200

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["email"] == "seeker@ashram.org"


@pytest.mark.asyncio
async def test_login_with_wrong_password(client: AsyncClient, make_user):
    make_user("Seeker", email="seeker@ashram.org", password="om-shanti-123")

    response = await client.post("/api/auth/token", data={"username": "seeker@ashram.org", "password": "nope"})

    assert response.status_code == 401


def test_verify_token():
    token = create_access_token({"sub": "not-a-number"})
    assert verify_token(token) is not None
    assert verify_token("garbage") is None


def test_role_policy():
    visitor = models.User(role=models.UserRole.USER)
    coordinator = models.User(role=models.UserRole.COORDINATOR)
    guruji = models.User(role=models.UserRole.GURUJI)
    admin = models.User(role=models.UserRole.ADMIN)

    assert has_capability(visitor, Capability.BOOK_APPOINTMENT)
    assert not has_capability(visitor, Capability.MANAGE_QUEUE)
    assert has_capability(coordinator, Capability.MANUAL_CHECKIN)
    assert not has_capability(coordinator, Capability.PRESCRIBE_REMEDY)
    assert has_capability(guruji, Capability.PRESCRIBE_REMEDY)
    assert not has_capability(guruji, Capability.VIEW_SYSTEM_METRICS)
    assert all(has_capability(admin, cap) for cap in Capability)


def test_cooldown_in_memory():
    cooldown = CheckInCooldown(ttl_seconds=10)

    assert cooldown.acquire(1) is True
    assert cooldown.acquire(1) is False
    assert cooldown.acquire(2) is True
    with pytest.raises(RateLimitError):
        cooldown.guard(1)

    cooldown.release(1)
    assert cooldown.acquire(1) is True


def test_cooldown_expires():
    cooldown = CheckInCooldown(ttl_seconds=0)

    assert cooldown.acquire(1) is True
    assert cooldown.acquire(1) is True


@pytest.mark.asyncio
async def test_seeded_guruji_can_log_in(client: AsyncClient, db, monkeypatch):
    settings = get_settings()
    create_initial_data()
    guruji = db.query(models.User).filter_by(email=settings.default_guruji_email).one()
    assert guruji.role == models.UserRole.GURUJI
    assert guruji.password_hash is None

    monkeypatch.setattr(settings, "default_guruji_password", "pranam-guruji-1")
    create_initial_data()
    db.expire_all()

    response = await client.post("/api/auth/token", data={"username": settings.default_guruji_email,
                                                          "password": "pranam-guruji-1"})
    assert response.status_code == 200
    assert verify_token(response.json()["access_token"])["role"] == "GURUJI"
    assert db.query(models.RemedyTemplate).count() == 3
