from datetime import timedelta

import pytest
from httpx import AsyncClient

from ashram import crud, models, schemas
from ashram.security import verify_password
from ashram.services import queue_service
from ashram.timeutils import utcnow

from conftest import auth_headers


@pytest.mark.asyncio
async def test_admin_creates_staff_account(client: AsyncClient, db, admin):
    payload = {"name": "Coordinator Ravi", "email": "ravi@ashram.org", "password": "seva-1234",
               "role": "COORDINATOR"}

    response = await client.post("/api/admin/users", json=payload, headers=auth_headers(admin))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "COORDINATOR"
    assert data["isActive"] is True
    assert "password" not in data and "passwordHash" not in data

    created = db.get(models.User, data["id"])
    assert verify_password("seva-1234", created.password_hash)
    audit = db.query(models.AuditLog).filter_by(action="CREATE_USER").one()
    assert "password" not in audit.new_data


@pytest.mark.asyncio
async def test_duplicate_email_is_rejected(client: AsyncClient, admin, visitor):
    response = await client.post("/api/admin/users", json={"name": "Copy", "email": visitor.email},
                                 headers=auth_headers(admin))

    assert response.status_code == 400
    assert response.json()["message"] == "Email already exists"


@pytest.mark.asyncio
async def test_contact_is_required(client: AsyncClient, admin):
    response = await client.post("/api/admin/users", json={"name": "Nobody"}, headers=auth_headers(admin))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_users_filters_by_role(client: AsyncClient, admin, visitor, guruji, coordinator):
    response = await client.get("/api/admin/users", params={"role": "GURUJI"}, headers=auth_headers(admin))

    body = response.json()
    assert [u["id"] for u in body["data"]] == [guruji.id]
    assert body["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_deactivated_user_loses_access(client: AsyncClient, admin, visitor):
    response = await client.patch(f"/api/admin/users/{visitor.id}/status", json={"isActive": False},
                                  headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["data"]["isActive"] is False

    me = await client.get("/api/auth/me", headers=auth_headers(visitor))
    assert me.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_deactivate_self(client: AsyncClient, admin):
    response = await client.patch(f"/api/admin/users/{admin.id}/status", json={"isActive": False},
                                  headers=auth_headers(admin))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_user_admin_is_admin_only(client: AsyncClient, coordinator):
    response = await client.get("/api/admin/users", headers=auth_headers(coordinator))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_user_detail_counts_activity(client: AsyncClient, admin, visitor, guruji, make_appointment):
    for hours in (1, 2):
        make_appointment(visitor, guruji, when=utcnow() + timedelta(hours=hours))

    response = await client.get(f"/api/admin/users/{visitor.id}", headers=auth_headers(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Meera"
    assert data["counts"] == {"appointments": 2, "consultationSessions": 0, "remedyDocuments": 0,
                              "notifications": 0}
    assert len(data["recentAppointments"]) == 2
    assert data["recentAppointments"][0]["status"] == "BOOKED"


@pytest.mark.asyncio
async def test_unknown_user_detail(client: AsyncClient, admin):
    response = await client.get("/api/admin/users/999", headers=auth_headers(admin))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_updates_user(client: AsyncClient, db, admin, visitor):
    response = await client.put(f"/api/admin/users/{visitor.id}",
                                json={"name": "Meera Devi", "role": "COORDINATOR", "password": "new-pass-123"},
                                headers=auth_headers(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Meera Devi"
    assert data["role"] == "COORDINATOR"

    db.refresh(visitor)
    assert verify_password("new-pass-123", visitor.password_hash)
    audit = db.query(models.AuditLog).filter_by(action="UPDATE_USER").one()
    assert audit.old_data["role"] == "USER"
    assert audit.new_data == {"name": "Meera Devi", "role": "COORDINATOR"}


@pytest.mark.asyncio
async def test_update_rejects_taken_email(client: AsyncClient, db, admin, visitor, other_visitor):
    response = await client.put(f"/api/admin/users/{visitor.id}", json={"email": other_visitor.email},
                                headers=auth_headers(admin))

    assert response.status_code == 400
    assert response.json()["message"] == "Email is already in use by another user"
    assert db.query(models.AuditLog).count() == 0


@pytest.mark.asyncio
async def test_update_keeps_a_contact(client: AsyncClient, make_user, admin):
    user = make_user("Email Only", email="only@ashram.org")

    response = await client.put(f"/api/admin/users/{user.id}", json={"email": None},
                                headers=auth_headers(admin))

    assert response.status_code == 400
    assert response.json()["message"] == "Either email or phone is required"


@pytest.mark.asyncio
async def test_admin_cannot_demote_self(client: AsyncClient, admin):
    response = await client.put(f"/api/admin/users/{admin.id}", json={"role": "USER"},
                                headers=auth_headers(admin))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_user_without_history(client: AsyncClient, db, admin, make_user):
    user = make_user("Walk-in")
    user_id = user.id

    response = await client.delete(f"/api/admin/users/{user_id}", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["data"] == {"id": user_id, "action": "deleted"}
    db.expire_all()
    assert db.get(models.User, user_id) is None
    assert db.query(models.AuditLog).filter_by(action="DELETE_USER", resource_id=user_id).count() == 1


@pytest.mark.asyncio
async def test_delete_user_with_history_deactivates(client: AsyncClient, db, admin, visitor, guruji,
                                                    make_appointment):
    make_appointment(visitor, guruji)

    response = await client.delete(f"/api/admin/users/{visitor.id}", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["data"]["action"] == "deactivated"
    db.expire_all()
    assert db.get(models.User, visitor.id).is_active is False


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(client: AsyncClient, admin):
    response = await client.delete(f"/api/admin/users/{admin.id}", headers=auth_headers(admin))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_failed_create_leaves_no_rows(client: AsyncClient, db, admin, visitor):
    await client.post("/api/admin/users", json={"name": "Copy", "email": visitor.email},
                      headers=auth_headers(admin))

    assert db.query(models.AuditLog).count() == 0
    assert db.query(models.User).filter_by(name="Copy").count() == 0


def test_user_writes_wait_for_the_caller_commit(db, make_user):
    user = make_user("Pending")

    crud.set_user_active(db, user, False)
    db.rollback()
    assert db.get(models.User, user.id).is_active is True

    created = crud.create_user(db, schemas.UserCreate(name="Draft", email="draft@ashram.org"))
    created_id = created.id
    db.rollback()
    assert db.get(models.User, created_id) is None


@pytest.mark.asyncio
async def test_guruji_patient_list(client: AsyncClient, db, guruji, visitor, other_visitor, make_user,
                                   make_appointment):
    other_guruji = make_user("Guruji Devi", models.UserRole.GURUJI)
    make_appointment(visitor, guruji, when=utcnow() - timedelta(days=3), status=models.AppointmentStatus.COMPLETED)
    latest = make_appointment(visitor, guruji)
    queue_service.check_in(db, visitor, latest.id)
    make_appointment(other_visitor, other_guruji)

    response = await client.get("/api/guruji/patients", headers=auth_headers(guruji))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    patient = data["patients"][0]
    assert patient["id"] == visitor.id
    assert patient["inQueue"] is True
    assert patient["lastAppointment"]["id"] == latest.id

    searched = await client.get("/api/guruji/patients", params={"search": "nobody"}, headers=auth_headers(guruji))
    assert searched.json()["data"]["patients"] == []


@pytest.mark.asyncio
async def test_patient_list_access(client: AsyncClient, admin, coordinator, guruji, visitor, make_appointment):
    make_appointment(visitor, guruji)

    assert (await client.get("/api/guruji/patients", headers=auth_headers(coordinator))).status_code == 403
    assert (await client.get("/api/guruji/patients", headers=auth_headers(admin))).status_code == 400

    response = await client.get("/api/guruji/patients", params={"gurujiId": guruji.id}, headers=auth_headers(admin))
    assert [p["id"] for p in response.json()["data"]["patients"]] == [visitor.id]
