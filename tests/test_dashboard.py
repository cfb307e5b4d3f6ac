from datetime import timedelta

import pytest
from httpx import AsyncClient

from ashram import crud, models
from ashram.services import queue_service
from ashram.timeutils import utcnow

from conftest import auth_headers


@pytest.fixture
def busy_day(db, make_user, guruji, coordinator, make_appointment):
    visitors = [make_user(f"Visitor {i}") for i in range(4)]
    appointments = [make_appointment(v, guruji, when=utcnow()) for v in visitors]
    served = queue_service.check_in(db, visitors[0], appointments[0].id)
    queue_service.check_in(db, visitors[1], appointments[1].id)
    queue_service.update_status(db, coordinator, served.id, models.QueueStatus.IN_PROGRESS)
    queue_service.update_status(db, coordinator, served.id, models.QueueStatus.COMPLETED)
    appointments[3].status = models.AppointmentStatus.CANCELLED
    db.commit()
    return appointments


@pytest.mark.asyncio
async def test_coordinator_dashboard(client: AsyncClient, coordinator, guruji, busy_day):
    response = await client.get("/api/coordinator/dashboard", headers=auth_headers(coordinator))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["stats"] == {
        "totalAppointmentsToday": 4,
        "checkedInToday": 2,
        "completedToday": 1,
        "waitingInQueue": 1,
        "pendingApprovals": 1,
    }
    assert data["todayStats"]["cancellations"] == 1
    assert [a["status"] for a in data["upcomingAppointments"]] == ["CHECKED_IN", "BOOKED"]
    assert data["queueSummary"] == [{
        "gurujiId": guruji.id,
        "gurujiName": guruji.name,
        "waitingCount": 1,
        "inProgressCount": 0,
        "averageWaitTime": 30,
    }]


@pytest.mark.asyncio
async def test_dashboard_is_for_coordinators(client: AsyncClient, visitor, guruji):
    assert (await client.get("/api/coordinator/dashboard", headers=auth_headers(visitor))).status_code == 403
    assert (await client.get("/api/coordinator/dashboard", headers=auth_headers(guruji))).status_code == 403


@pytest.mark.asyncio
async def test_admin_stats(client: AsyncClient, admin, coordinator, busy_day):
    response = await client.get("/api/admin/dashboard/stats", headers=auth_headers(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalAppointments"] == 4
    assert data["activeQueues"] == 1
    assert data["systemHealth"] == "healthy"
    assert data["recentActivity"][0]["action"] == "UPDATE_QUEUE_STATUS"

    forbidden = await client.get("/api/admin/dashboard/stats", headers=auth_headers(coordinator))
    assert forbidden.status_code == 403


def test_many_cancellations_degrade_health(db, visitor, guruji, make_appointment):
    for hours in range(6):
        make_appointment(visitor, guruji, when=utcnow() + timedelta(hours=hours + 1),
                         status=models.AppointmentStatus.CANCELLED)
    assert crud.get_admin_stats(db)["system_health"] == "warning"

    for hours in range(5):
        make_appointment(visitor, guruji, when=utcnow() + timedelta(days=1, hours=hours),
                         status=models.AppointmentStatus.CANCELLED)
    assert crud.get_admin_stats(db)["system_health"] == "critical"


@pytest.mark.asyncio
async def test_audit_log_listing(client: AsyncClient, admin, busy_day):
    response = await client.get("/api/admin/audit-logs", params={"action": "CHECK_IN"},
                                headers=auth_headers(admin))

    body = response.json()
    assert body["pagination"]["total"] == 2
    assert {log["action"] for log in body["data"]} == {"CHECK_IN"}
