from datetime import datetime, timedelta, timezone
import json

import pytest
from httpx import AsyncClient

from ashram import models, schemas
from ashram.errors import RateLimitError
from ashram.services import appointment_service, queue_service
from ashram.timeutils import local_tz, utcnow

from conftest import auth_headers


def _queue_entries(db, appointment_id):
    return db.query(models.QueueEntry).filter(models.QueueEntry.appointment_id == appointment_id).all()


@pytest.mark.asyncio
async def test_first_checkin_gets_position_one(client: AsyncClient, db, visitor, guruji, make_appointment):
    appointment = make_appointment(visitor, guruji)

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id},
                                 headers=auth_headers(visitor))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["position"] == 1
    assert data["estimatedWait"] == 15
    assert data["queueEntry"]["status"] == "WAITING"

    db.refresh(appointment)
    assert appointment.status == models.AppointmentStatus.CHECKED_IN
    assert appointment.checked_in_at is not None

    notification = db.query(models.Notification).filter_by(user_id=visitor.id).one()
    assert notification.title == "Check-in Successful"
    assert notification.data["queuePosition"] == 1

    audit = db.query(models.AuditLog).filter_by(action="CHECK_IN").one()
    assert audit.resource == "APPOINTMENT"
    assert audit.resource_id == appointment.id


@pytest.mark.asyncio
async def test_second_visitor_queues_behind_first(client: AsyncClient, visitor, other_visitor, guruji,
                                                  make_appointment):
    first = make_appointment(visitor, guruji)
    second = make_appointment(other_visitor, guruji)

    await client.post("/api/checkin", json={"appointmentId": first.id}, headers=auth_headers(visitor))
    response = await client.post("/api/checkin", json={"appointmentId": second.id},
                                 headers=auth_headers(other_visitor))

    data = response.json()["data"]
    assert data["position"] == 2
    assert data["estimatedWait"] == 30


def test_position_counts_waiting_and_in_progress_only(db, make_user, guruji, coordinator, make_appointment):
    visitors = [make_user(f"Visitor {i}") for i in range(4)]
    appointments = [make_appointment(v, guruji) for v in visitors]

    first = queue_service.check_in(db, visitors[0], appointments[0].id)
    queue_service.check_in(db, visitors[1], appointments[1].id)
    queue_service.update_status(db, coordinator, first.id, models.QueueStatus.IN_PROGRESS)

    third = queue_service.check_in(db, visitors[2], appointments[2].id)
    assert third.position == 3

    queue_service.update_status(db, coordinator, first.id, models.QueueStatus.COMPLETED)
    fourth = queue_service.check_in(db, visitors[3], appointments[3].id)
    # Two entries still open (positions 2 and 3); positions are not re-balanced
    assert fourth.position == 3
    assert fourth.estimated_wait == 45


def test_queues_are_counted_per_guruji(db, visitor, other_visitor, guruji, make_user, make_appointment):
    second_guruji = make_user("Guruji Devi", models.UserRole.GURUJI)
    queue_service.check_in(db, visitor, make_appointment(visitor, guruji).id)

    entry = queue_service.check_in(db, other_visitor, make_appointment(other_visitor, second_guruji).id)
    assert entry.position == 1


@pytest.mark.asyncio
async def test_checking_in_twice_is_rejected(client: AsyncClient, db, visitor, guruji, make_appointment):
    appointment = make_appointment(visitor, guruji)
    headers = auth_headers(visitor)

    first = await client.post("/api/checkin", json={"appointmentId": appointment.id}, headers=headers)
    second = await client.post("/api/checkin", json={"appointmentId": appointment.id}, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 400
    body = second.json()
    assert body["success"] is False
    assert body["message"] == "You have already checked in for this appointment"
    assert len(_queue_entries(db, appointment.id)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [timedelta(hours=30), timedelta(days=-2)])
async def test_checkin_outside_window_is_rejected(client: AsyncClient, db, visitor, guruji,
                                                  make_appointment, offset):
    appointment = make_appointment(visitor, guruji, when=utcnow() + offset)

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id},
                                 headers=auth_headers(visitor))

    assert response.status_code == 400
    assert response.json()["message"] == "Check-in is only available on the day of appointment"
    assert _queue_entries(db, appointment.id) == []


@pytest.mark.asyncio
async def test_cannot_check_in_someone_elses_appointment(client: AsyncClient, visitor, other_visitor, guruji,
                                                         make_appointment):
    appointment = make_appointment(visitor, guruji)

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id},
                                 headers=auth_headers(other_visitor))

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_cancelled_appointment_is_not_eligible(client: AsyncClient, visitor, guruji, make_appointment):
    appointment = make_appointment(visitor, guruji, status=models.AppointmentStatus.CANCELLED)

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id},
                                 headers=auth_headers(visitor))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_failed_attempt_keeps_cooldown(client: AsyncClient, visitor, guruji, make_appointment):
    too_early = make_appointment(visitor, guruji, when=utcnow() + timedelta(days=3))
    today = make_appointment(visitor, guruji)
    headers = auth_headers(visitor)

    rejected = await client.post("/api/checkin", json={"appointmentId": too_early.id}, headers=headers)
    retried = await client.post("/api/checkin", json={"appointmentId": today.id}, headers=headers)

    assert rejected.status_code == 400
    assert retried.status_code == 429
    assert retried.json()["code"] == "RATE_LIMIT_EXCEEDED"


@pytest.mark.asyncio
async def test_qr_payload_must_match_appointment(client: AsyncClient, visitor, guruji, make_appointment):
    appointment = make_appointment(visitor, guruji)
    wrong = json.dumps({"appointmentId": appointment.id + 100, "userId": visitor.id, "type": "checkin"})

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id, "qrData": wrong},
                                 headers=auth_headers(visitor))

    assert response.status_code == 400
    assert response.json()["message"] == "QR code does not match this appointment"


@pytest.mark.asyncio
async def test_valid_qr_payload_checks_in(client: AsyncClient, db, visitor, guruji, make_appointment):
    appointment = make_appointment(visitor, guruji)
    payload = json.dumps({"appointmentId": appointment.id, "userId": visitor.id, "type": "checkin"})

    response = await client.post("/api/checkin", json={"appointmentId": appointment.id, "qrData": payload},
                                 headers=auth_headers(visitor))

    assert response.status_code == 200
    notification = db.query(models.Notification).filter_by(user_id=visitor.id).one()
    assert notification.data["checkInMethod"] == "qr"


@pytest.mark.asyncio
async def test_coordinator_manual_checkin_by_reference_code(client: AsyncClient, db, visitor, coordinator,
                                                            guruji, make_appointment):
    appointment = make_appointment(visitor, guruji)

    response = await client.post("/api/checkin/manual",
                                 json={"appointmentCode": appointment.reference_code.lower()},
                                 headers=auth_headers(coordinator))

    assert response.status_code == 200
    assert response.json()["data"]["position"] == 1
    entry = _queue_entries(db, appointment.id)[0]
    assert entry.user_id == visitor.id

    notification = db.query(models.Notification).filter_by(user_id=visitor.id).one()
    assert notification.title == "Manual Check-in Successful"
    assert notification.data["checkInMethod"] == "manual"
    audit = db.query(models.AuditLog).filter_by(action="MANUAL_CHECK_IN").one()
    assert audit.user_id == coordinator.id


@pytest.mark.asyncio
async def test_visitor_cannot_manually_check_in_others(client: AsyncClient, visitor, other_visitor, guruji,
                                                       make_appointment):
    appointment = make_appointment(visitor, guruji)

    response = await client.post("/api/checkin/manual", json={"appointmentCode": appointment.reference_code},
                                 headers=auth_headers(other_visitor))

    assert response.status_code == 404


def test_cooldown_blocks_rapid_resubmission(db, visitor):
    checkin_cooldown_guard = queue_service.checkin_cooldown
    checkin_cooldown_guard.guard(visitor.id)
    with pytest.raises(RateLimitError):
        queue_service.check_in(db, visitor, 12345)


def test_booked_tomorrow_checked_in_ten_minutes_early(db, visitor, other_visitor, guruji):
    tz = local_tz()
    booked_at = datetime(2026, 10, 19, 8, 0, tzinfo=tz).astimezone(timezone.utc)  # Monday
    tomorrow_ten = datetime(2026, 10, 20, 10, 0)
    tomorrow_ten_thirty = datetime(2026, 10, 20, 10, 30)

    first = appointment_service.book_appointment(
        db, visitor, schemas.AppointmentCreate(date=tomorrow_ten, guruji_id=guruji.id), now=booked_at)
    second = appointment_service.book_appointment(
        db, other_visitor, schemas.AppointmentCreate(date=tomorrow_ten_thirty, guruji_id=guruji.id), now=booked_at)

    arrival = datetime(2026, 10, 20, 9, 50, tzinfo=tz).astimezone(timezone.utc)
    entry = queue_service.check_in(db, visitor, first.id, now=arrival)
    assert (entry.position, entry.estimated_wait) == (1, 15)

    later = queue_service.check_in(db, other_visitor, second.id, now=arrival + timedelta(minutes=5))
    assert (later.position, later.estimated_wait) == (2, 30)
