import pytest
from httpx import AsyncClient

from ashram import crud, models

from conftest import auth_headers


@pytest.fixture
def make_notification(db):
    def _make(user, title="Hello", type=models.NotificationType.system, read=False):
        notification = crud.add_notification(db, user.id, title, f"{title} message", type)
        notification.read = read
        db.commit()
        db.refresh(notification)
        return notification
    return _make


@pytest.mark.asyncio
async def test_mark_all_read_only_touches_caller(client: AsyncClient, db, visitor, other_visitor,
                                                 make_notification):
    for title in ("One", "Two", "Three"):
        make_notification(visitor, title)
    make_notification(visitor, "Old", read=True)
    theirs = make_notification(other_visitor, "Theirs")

    response = await client.post("/api/notifications/mark-all-read", headers=auth_headers(visitor))

    assert response.status_code == 200
    assert response.json()["data"] == {"count": 3}
    db.expire_all()
    unread = db.query(models.Notification).filter_by(user_id=visitor.id, read=False).count()
    assert unread == 0
    assert db.get(models.Notification, theirs.id).read is False


@pytest.mark.asyncio
async def test_list_reports_totals_and_filters(client: AsyncClient, visitor, make_notification):
    make_notification(visitor, "Booked", type=models.NotificationType.appointment)
    make_notification(visitor, "Queue", type=models.NotificationType.queue, read=True)
    make_notification(visitor, "Remedy", type=models.NotificationType.remedy)
    headers = auth_headers(visitor)

    everything = (await client.get("/api/notifications", headers=headers)).json()["data"]
    assert everything["total"] == 3
    assert everything["unread"] == 2

    unread = (await client.get("/api/notifications", params={"unreadOnly": "true"}, headers=headers)).json()
    assert {n["title"] for n in unread["data"]["notifications"]} == {"Booked", "Remedy"}

    by_type = (await client.get("/api/notifications", params={"type": "queue"}, headers=headers)).json()
    assert [n["title"] for n in by_type["data"]["notifications"]] == ["Queue"]
    assert by_type["data"]["unread"] == 2

    paged = (await client.get("/api/notifications", params={"limit": 1, "offset": 1}, headers=headers)).json()
    assert len(paged["data"]["notifications"]) == 1
    assert paged["data"]["total"] == 3


@pytest.mark.asyncio
async def test_staff_can_send_notification(client: AsyncClient, db, visitor, coordinator):
    payload = {"userId": visitor.id, "title": "Darshan timing", "message": "Evening darshan moved to 6pm",
               "type": "system", "priority": "HIGH", "sendEmail": True, "sendSms": True}

    response = await client.post("/api/notifications", json=payload, headers=auth_headers(coordinator))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["userId"] == visitor.id
    assert data["read"] is False
    assert data["emailSent"] is True
    assert data["smsSent"] is True
    audit = db.query(models.AuditLog).filter_by(action="CREATE_NOTIFICATION").one()
    assert audit.user_id == coordinator.id


@pytest.mark.asyncio
async def test_sms_not_sent_without_phone(client: AsyncClient, other_visitor, admin):
    payload = {"userId": other_visitor.id, "title": "Hi", "message": "Hello", "type": "system", "sendSms": True}

    response = await client.post("/api/notifications", json=payload, headers=auth_headers(admin))

    assert response.json()["data"]["smsSent"] is False


@pytest.mark.asyncio
async def test_visitor_cannot_send_notification(client: AsyncClient, visitor, other_visitor):
    payload = {"userId": other_visitor.id, "title": "Hi", "message": "Hello", "type": "system"}

    response = await client.post("/api/notifications", json=payload, headers=auth_headers(visitor))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_notification_for_unknown_user(client: AsyncClient, admin):
    payload = {"userId": 4242, "title": "Hi", "message": "Hello", "type": "system"}

    response = await client.post("/api/notifications", json=payload, headers=auth_headers(admin))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_mark_single_notification_read(client: AsyncClient, visitor, make_notification):
    notification = make_notification(visitor)

    response = await client.patch(f"/api/notifications/{notification.id}", headers=auth_headers(visitor))

    assert response.status_code == 200
    assert response.json()["data"]["read"] is True


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_notification(client: AsyncClient, visitor, other_visitor,
                                                       make_notification):
    notification = make_notification(visitor)

    patched = await client.patch(f"/api/notifications/{notification.id}", headers=auth_headers(other_visitor))
    deleted = await client.delete(f"/api/notifications/{notification.id}", headers=auth_headers(other_visitor))

    assert patched.status_code == 403
    assert deleted.status_code == 403


@pytest.mark.asyncio
async def test_admin_can_delete_any_notification(client: AsyncClient, db, visitor, admin, make_notification):
    notification = make_notification(visitor)

    response = await client.delete(f"/api/notifications/{notification.id}", headers=auth_headers(admin))

    assert response.status_code == 200
    db.expire_all()
    assert db.get(models.Notification, notification.id) is None


@pytest.mark.asyncio
async def test_missing_notification(client: AsyncClient, visitor):
    response = await client.delete("/api/notifications/999", headers=auth_headers(visitor))

    assert response.status_code == 404
