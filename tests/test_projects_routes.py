"""
Tests for project routes — progress notifications, final-payment link
and delivery scheduling.
"""

from sqlalchemy import select

from agency.config import settings
from agency.models.notification import Notification
from agency.models.project import Project
from agency.workflow.conversion import ConversionOrchestrator

from tests.conftest import ADMIN_HEADERS, reload

SCHEDULE = {"date": "2026-11-20", "time": "14:30", "type": "video"}


async def _project(db_session, make_budget, email_service, **overrides) -> Project:
    """A project freshly converted from a paid down payment."""
    budget = await make_budget(**overrides)
    result = await ConversionOrchestrator(db_session, email_service=email_service).confirm_down_payment(budget.id)
    email_service.send_email.reset_mock()
    return result.project


async def _at_progress(client, project_id: str, progress: int):
    return await client.post(
        f"/api/v1/projects/{project_id}/notify-progress",
        json={"progress": progress, "send_email": False},
        headers=ADMIN_HEADERS,
    )


async def _finished(client, db_session, make_budget, email_service) -> Project:
    project = await _project(db_session, make_budget, email_service)
    await _at_progress(client, project.id, 100)
    await client.post(f"/api/v1/projects/{project.id}/final-payment", headers=ADMIN_HEADERS)
    email_service.send_email.reset_mock()
    return project


class TestProjectCrud:
    async def test_list_and_get(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)

        resp = await client.get("/api/v1/projects", headers=ADMIN_HEADERS)
        assert resp.json()["total"] == 1

        resp = await client.get("/api/v1/projects?status=planning", headers=ADMIN_HEADERS)
        assert resp.json()["total"] == 1

        resp = await client.get(f"/api/v1/projects/{project.id}", headers=ADMIN_HEADERS)
        data = resp.json()
        assert data["status"] == "planning"
        assert data["budget_id"] is not None
        assert [p["type"] for p in data["payments"]] == ["down_payment"]

    async def test_get_not_found(self, client, admin):
        resp = await client.get("/api/v1/projects/missing", headers=ADMIN_HEADERS)
        assert resp.status_code == 404

    async def test_patch_descriptive_fields(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        resp = await client.patch(
            f"/api/v1/projects/{project.id}",
            json={"name": "New site", "due_date": "2026-12-01", "status": "completed"},
            headers=ADMIN_HEADERS,
        )
        data = resp.json()
        assert data["name"] == "New site"
        assert data["due_date"] == "2026-12-01"
        assert data["status"] == "planning"


    async def test_patch_rejects_null_name(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        project_id, name = project.id, project.name
        for field in ("name", "description"):
            resp = await client.patch(
                f"/api/v1/projects/{project_id}", json={field: None}, headers=ADMIN_HEADERS,
            )
            assert resp.status_code == 422, field

        project = await reload(db_session, Project, project_id)
        assert project.name == name

    async def test_patch_clears_dates(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        resp = await client.patch(
            f"/api/v1/projects/{project.id}", json={"due_date": None}, headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["due_date"] is None


class TestNotifyProgress:
    async def test_advances_and_emails(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        resp = await client.post(
            f"/api/v1/projects/{project.id}/notify-progress",
            json={"progress": 50, "send_whatsapp": True},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["changed"] is True
        assert data["project"]["status"] == "development_50"
        assert data["project"]["progress"] == 50
        assert data["email_sent"] is True
        assert data["whatsapp_url"].startswith("https://wa.me/5511987654321")
        assert email_service.send_email.await_args.args[0] == "x@y.com"

    async def test_invalid_value(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        resp = await _at_progress(client, project.id, 30)
        assert resp.status_code == 400

    async def test_cannot_go_back(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        await _at_progress(client, project.id, 70)
        resp = await _at_progress(client, project.id, 20)
        assert resp.status_code == 400

        project = await reload(db_session, Project, project.id)
        assert project.progress == 70

    async def test_same_value_resends_only(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        await _at_progress(client, project.id, 50)
        resp = await client.post(
            f"/api/v1/projects/{project.id}/notify-progress",
            json={"progress": 50, "custom_message": "Quick reminder"},
            headers=ADMIN_HEADERS,
        )
        data = resp.json()
        assert data["changed"] is False
        assert data["project"]["status"] == "development_50"
        assert data["email_sent"] is True
        assert "Quick reminder" in email_service.send_email.await_args.args[2]

    async def test_refused_once_finished(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await _at_progress(client, project.id, 100)
        assert resp.status_code == 400


class TestFinalPaymentLink:
    async def test_creates_link(self, client, admin, db_session, make_budget, email_service, payment_links):
        project = await _project(db_session, make_budget, email_service)
        await _at_progress(client, project.id, 100)

        resp = await client.post(f"/api/v1/projects/{project.id}/final-payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["payment"]["amount"] == 6000
        assert data["payment"]["project_id"] == project.id
        assert data["project_status"] == "waiting_final_payment"
        assert data["budget_status"] == "final_payment_sent"
        assert data["payment_link"] == "https://buy.stripe.com/test_123"

        metadata = payment_links.create_link.await_args.args[2]
        assert metadata["type"] == "final_payment"
        assert metadata["project_id"] == project.id

    async def test_refused_during_development(self, client, admin, db_session, make_budget, email_service, payment_links):
        project = await _project(db_session, make_budget, email_service)
        await _at_progress(client, project.id, 70)

        resp = await client.post(f"/api/v1/projects/{project.id}/final-payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 400
        payment_links.create_link.assert_not_awaited()

    async def test_link_can_be_resent(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await client.post(f"/api/v1/projects/{project.id}/final-payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 200

        resp = await client.get(f"/api/v1/projects/{project.id}", headers=ADMIN_HEADERS)
        assert len(resp.json()["payments"]) == 2


class TestSchedule:
    async def test_not_before_finish(self, client, admin, db_session, make_budget, email_service):
        project = await _project(db_session, make_budget, email_service)
        resp = await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)
        assert resp.status_code == 400

    async def test_client_books(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)

        resp = await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["schedule"]["status"] == "scheduled"
        assert data["schedule"]["date"] == "2026-11-20"
        assert data["schedule"]["meeting_link"] == settings.meeting_link
        assert data["email_sent"] is True
        assert "20/11/2026 14:30" in email_service.send_email.await_args.args[2]

        notes = await db_session.execute(select(Notification).where(Notification.title == "Delivery scheduled"))
        assert len(notes.scalars().all()) == 1

        resp = await client.get(f"/api/v1/projects/{project.id}/schedule")
        assert resp.json()["time"] == "14:30"

    async def test_audio_has_no_link(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await client.post(
            f"/api/v1/projects/{project.id}/schedule", json={**SCHEDULE, "type": "audio"},
        )
        assert resp.json()["schedule"]["meeting_link"] is None

    async def test_double_booking_refused(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)
        resp = await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)
        assert resp.status_code == 400

    async def test_bad_time(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await client.post(f"/api/v1/projects/{project.id}/schedule", json={**SCHEDULE, "time": "25:00"})
        assert resp.status_code == 422

    async def test_reschedule_request_then_rebook(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)

        resp = await client.post(
            f"/api/v1/projects/{project.id}/schedule/request-reschedule", json={"reason": "Travelling"},
        )
        assert resp.json()["schedule"]["status"] == "pending_reschedule"
        assert resp.json()["schedule"]["reschedule_reason"] == "Travelling"

        resp = await client.post(
            f"/api/v1/projects/{project.id}/schedule", json={**SCHEDULE, "date": "2026-11-27"},
        )
        assert resp.status_code == 201
        assert resp.json()["schedule"]["status"] == "scheduled"
        assert resp.json()["schedule"]["date"] == "2026-11-27"

    async def test_internal_reschedule(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        await client.post(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)

        resp = await client.put(
            f"/api/v1/projects/{project.id}/schedule",
            json={**SCHEDULE, "time": "10:00", "reason": "Team offsite"},
            headers=ADMIN_HEADERS,
        )
        data = resp.json()
        assert data["schedule"]["status"] == "rescheduled"
        assert data["schedule"]["time"] == "10:00"
        assert data["schedule"]["reschedule_reason"] == "Team offsite"

    async def test_reschedule_requires_auth(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await client.put(f"/api/v1/projects/{project.id}/schedule", json=SCHEDULE)
        assert resp.status_code == 401

    async def test_missing_schedule(self, client, admin, db_session, make_budget, email_service):
        project = await _finished(client, db_session, make_budget, email_service)
        resp = await client.get(f"/api/v1/projects/{project.id}/schedule")
        assert resp.status_code == 404
