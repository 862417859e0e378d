"""
Tests for budget routes — quote requests, proposals, review, contracts
and the down-payment link.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from agency.models.budget import Budget
from agency.models.common import utcnow
from agency.models.contract import Contract
from agency.models.notification import Notification
from agency.models.payment import Payment
from agency.services.payment_links import PaymentLinkError

from tests.conftest import ADMIN_HEADERS, MANAGER_HEADERS, MEMBER_HEADERS, reload

QUOTE_REQUEST = {
    "client_name": "Maria Silva Santos",
    "client_email": "maria@example.com",
    "client_phone": "11987654321",
    "project_type": "Website",
    "complexity": "medium",
    "timeline": "normal",
    "features": ["blog"],
    "details": "Institutional site",
    "estimated_min": "4000",
    "estimated_max": "6000",
}


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert "timestamp" in data

    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert "Back-office" in resp.json()["service"]


class TestBudgetCrud:
    async def test_public_quote_request(self, client):
        resp = await client.post("/api/v1/budgets", json=QUOTE_REQUEST)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["project_id"] is None
        assert data["estimated_max"] == 6000

    async def test_quote_request_validation(self, client):
        resp = await client.post("/api/v1/budgets", json={**QUOTE_REQUEST, "client_email": "not-an-email"})
        assert resp.status_code == 422

    async def test_list_requires_auth(self, client):
        resp = await client.get("/api/v1/budgets")
        assert resp.status_code == 401

    async def test_list_with_bad_token(self, client, admin):
        resp = await client.get("/api/v1/budgets", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    async def test_list_and_filter(self, client, admin, make_budget):
        await make_budget(status="pending")
        await make_budget(status="accepted")

        resp = await client.get("/api/v1/budgets", headers=ADMIN_HEADERS)
        assert resp.json()["total"] == 2

        resp = await client.get("/api/v1/budgets?status=pending", headers=ADMIN_HEADERS)
        assert resp.json()["total"] == 1

        resp = await client.get("/api/v1/budgets?status=archived", headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    async def test_get_not_found(self, client, admin):
        resp = await client.get("/api/v1/budgets/missing", headers=ADMIN_HEADERS)
        assert resp.status_code == 404

    async def test_patch_never_touches_status(self, client, admin, make_budget):
        budget = await make_budget(status="pending")
        resp = await client.patch(
            f"/api/v1/budgets/{budget.id}",
            json={"final_value": "7000", "status": "completed"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["final_value"] == 7000
        assert data["status"] == "pending"

    async def test_patch_rejects_null_required_fields(self, client, admin, make_budget, db_session):
        budget = await make_budget(status="pending")
        for field in ("client_name", "client_email", "project_type", "estimated_min"):
            resp = await client.patch(
                f"/api/v1/budgets/{budget.id}", json={field: None}, headers=ADMIN_HEADERS,
            )
            assert resp.status_code == 422, field

        budget = await reload(db_session, Budget, budget.id)
        assert budget.client_name == "Maria Silva Santos"
        assert budget.project_type == "Website"

    async def test_patch_clears_optional_fields(self, client, admin, make_budget):
        budget = await make_budget(status="pending")
        resp = await client.patch(
            f"/api/v1/budgets/{budget.id}", json={"company": None, "details": None}, headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["company"] is None

    async def test_delete_before_money(self, client, admin, make_budget, db_session):
        budget = await make_budget(status="pending")
        resp = await client.delete(f"/api/v1/budgets/{budget.id}", headers=ADMIN_HEADERS)
        assert resp.status_code == 204
        result = await db_session.execute(select(Budget).where(Budget.id == budget.id))
        assert result.scalar_one_or_none() is None

    async def test_delete_refused_after_money(self, client, admin, make_budget):
        budget = await make_budget(status="down_payment_sent")
        resp = await client.delete(f"/api/v1/budgets/{budget.id}", headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    async def test_delete_refused_once_contract_sent(self, client, admin, make_budget):
        budget = await make_budget(status="contract_sent")
        resp = await client.delete(f"/api/v1/budgets/{budget.id}", headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    async def test_delete_rejected_budget(self, client, admin, make_budget):
        budget = await make_budget(status="rejected")
        resp = await client.delete(f"/api/v1/budgets/{budget.id}", headers=ADMIN_HEADERS)
        assert resp.status_code == 204


class TestProposal:
    async def test_send_proposal(self, client, admin, make_budget, email_service, db_session):
        budget = await make_budget(status="pending")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/send-proposal",
            json={"send_email": True, "send_whatsapp": True},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["budget"]["status"] == "sent"
        assert data["email_sent"] is True
        assert "/budget/approve/approval_" in data["approval_url"]
        assert data["whatsapp_url"].startswith("https://wa.me/5511987654321?text=")
        email_service.send_email.assert_awaited_once()

        budget = await reload(db_session, Budget, budget.id)
        assert budget.approval_token.startswith(f"approval_{budget.id}_")

    async def test_send_proposal_email_failure(self, client, admin, make_budget, email_service):
        email_service.send_email.return_value = {"success": False, "message": "SMTP down"}
        budget = await make_budget(status="pending")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/send-proposal", json={}, headers=ADMIN_HEADERS)
        data = resp.json()
        assert data["budget"]["status"] == "sent"
        assert data["email_sent"] is False
        assert data["email_error"] == "SMTP down"

    async def test_send_proposal_refused_after_acceptance(self, client, admin, make_budget):
        budget = await make_budget(status="accepted")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/send-proposal", json={}, headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    async def _sent_budget(self, client, make_budget):
        budget = await make_budget(status="pending")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/send-proposal",
            json={"send_email": False},
            headers=ADMIN_HEADERS,
        )
        token = resp.json()["approval_url"].rsplit("/", 1)[-1]
        return budget, token

    async def test_public_view(self, client, admin, make_budget):
        budget, token = await self._sent_budget(client, make_budget)
        resp = await client.get(f"/api/v1/budgets/token/{token}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == budget.id
        assert data["expired"] is False
        assert "accepted_by" not in data

    async def test_client_accepts(self, client, admin, make_budget, db_session):
        budget, token = await self._sent_budget(client, make_budget)
        resp = await client.put(f"/api/v1/budgets/approve/{token}", json={"accepted": True})
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        budget = await reload(db_session, Budget, budget.id)
        assert budget.approval_token is None
        assert budget.client_approved_at is not None

        notes = await db_session.execute(select(Notification).where(Notification.user_id == admin.id))
        assert any(n.title == "Proposal accepted" for n in notes.scalars())

        # Token is single-use
        resp = await client.put(f"/api/v1/budgets/approve/{token}", json={"accepted": True})
        assert resp.status_code == 404

    async def test_client_rejects(self, client, admin, make_budget):
        _, token = await self._sent_budget(client, make_budget)
        resp = await client.put(f"/api/v1/budgets/approve/{token}", json={"accepted": False})
        assert resp.json()["status"] == "rejected"

    async def test_expired_token(self, client, admin, make_budget, db_session):
        budget, token = await self._sent_budget(client, make_budget)
        budget = await reload(db_session, Budget, budget.id)
        budget.approval_token_expires = utcnow() - timedelta(days=1)
        await db_session.commit()

        resp = await client.put(f"/api/v1/budgets/approve/{token}", json={"accepted": True})
        assert resp.status_code == 400
        assert "expired" in resp.json()["detail"]

    async def test_already_answered(self, client, make_budget):
        await make_budget(status="accepted", approval_token="approval_x_y")
        resp = await client.put("/api/v1/budgets/approve/approval_x_y", json={"accepted": True})
        assert resp.status_code == 400

    async def test_unknown_token(self, client):
        resp = await client.put("/api/v1/budgets/approve/nope", json={"accepted": True})
        assert resp.status_code == 404


class TestReview:
    async def test_manager_accepts(self, client, manager, make_budget):
        budget = await make_budget(status="pending")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/review", json={"action": "accept"}, headers=MANAGER_HEADERS,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["accepted_by"] == manager.id
        assert data["status"] == "pending"

    async def test_decline_notifies_owner(self, client, admin, member, make_budget, db_session):
        budget = await make_budget(status="pending", user_id=member.id)
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/review",
            json={"action": "decline", "reason": "Out of scope"},
            headers=ADMIN_HEADERS,
        )
        assert resp.json()["decline_reason"] == "Out of scope"
        notes = await db_session.execute(select(Notification).where(Notification.user_id == member.id))
        assert [n.title for n in notes.scalars()] == ["Budget declined"]

    async def test_team_member_forbidden(self, client, member, make_budget):
        budget = await make_budget(status="pending")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/review", json={"action": "accept"}, headers=MEMBER_HEADERS,
        )
        assert resp.status_code == 403

    async def test_only_pending(self, client, admin, make_budget):
        budget = await make_budget(status="sent")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/review", json={"action": "accept"}, headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400


class TestContract:
    async def test_issue_contract(self, client, admin, make_budget, db_session):
        budget = await make_budget(status="accepted")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/contract",
            json={"content": "Terms and conditions", "final_value": "9000"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["budget_status"] == "contract_sent"
        assert data["contract"]["status"] == "sent"
        assert data["contract"]["sent_at"] is not None

        budget = await reload(db_session, Budget, budget.id)
        assert budget.final_value == Decimal("9000")

    async def test_reissue_keeps_one_contract(self, client, admin, make_budget, db_session):
        budget = await make_budget(status="accepted")
        for content in ("v1", "v2"):
            await client.post(
                f"/api/v1/budgets/{budget.id}/contract",
                json={"content": content, "send_email": False},
                headers=ADMIN_HEADERS,
            )
        result = await db_session.execute(select(Contract).where(Contract.budget_id == budget.id))
        contracts = result.scalars().all()
        assert len(contracts) == 1
        assert contracts[0].content == "v2"
        assert contracts[0].status == "pending"

    async def test_contract_requires_acceptance(self, client, admin, make_budget):
        budget = await make_budget(status="sent")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/contract", json={"content": "Terms"}, headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400

    async def test_client_signs(self, client, admin, make_budget, db_session):
        budget = await make_budget(status="accepted")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/contract", json={"content": "Terms"}, headers=ADMIN_HEADERS,
        )
        contract_id = resp.json()["contract"]["id"]

        resp = await client.get(f"/api/v1/contracts/{contract_id}")
        assert resp.json()["content"] == "Terms"

        resp = await client.post(f"/api/v1/contracts/{contract_id}/sign", json={"signer_name": "Maria Santos"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["contract"]["status"] == "signed_by_client"
        assert data["contract"]["signer_name"] == "Maria Santos"
        assert data["budget_status"] == "contract_signed"

        resp = await client.post(f"/api/v1/contracts/{contract_id}/sign", json={"signer_name": "Maria Santos"})
        assert resp.status_code == 400

    async def test_internal_confirmation(self, client, admin, make_budget):
        budget = await make_budget(status="accepted")
        await client.post(
            f"/api/v1/budgets/{budget.id}/contract", json={"content": "Terms"}, headers=ADMIN_HEADERS,
        )
        resp = await client.post(f"/api/v1/budgets/{budget.id}/contract/confirm", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["confirmed"] is True
        assert data["status"] == "signed"

        resp = await client.get(f"/api/v1/budgets/{budget.id}", headers=ADMIN_HEADERS)
        assert resp.json()["status"] == "contract_signed"

    async def test_get_missing_contract(self, client, admin, make_budget):
        budget = await make_budget()
        resp = await client.get(f"/api/v1/budgets/{budget.id}/contract", headers=ADMIN_HEADERS)
        assert resp.status_code == 404


class TestDownPaymentLink:
    async def test_creates_link_and_pending_payment(self, client, admin, make_budget, payment_links, db_session):
        budget = await make_budget(status="contract_signed", final_value=Decimal("10000"))
        resp = await client.post(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["payment_link"] == "https://buy.stripe.com/test_123"
        assert data["payment"]["amount"] == 2500
        assert data["payment"]["status"] == "pending"
        assert data["payment"]["payment_link_id"] == "plink_test_123"
        assert data["budget_status"] == "down_payment_sent"

        amount, _, metadata = payment_links.create_link.await_args.args
        assert amount == Decimal("2500.00")
        assert metadata["budget_id"] == budget.id
        assert metadata["type"] == "down_payment"

        budget = await reload(db_session, Budget, budget.id)
        assert budget.agreed_value == Decimal("10000")

    async def test_zero_value_refused(self, client, admin, make_budget):
        budget = await make_budget(status="accepted", final_value=Decimal("0"))
        resp = await client.post(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    async def test_already_paid(self, client, admin, make_budget, db_session, payment_links):
        budget = await make_budget(status="down_payment_paid", agreed_value=Decimal("8000"))
        db_session.add(Payment(budget_id=budget.id, type="down_payment", amount=Decimal("2000"), status="paid"))
        await db_session.commit()

        resp = await client.post(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)
        data = resp.json()
        assert data["payment_link"] is None
        assert data["success"] is True
        payment_links.create_link.assert_not_awaited()

    async def test_provider_failure(self, client, admin, make_budget, payment_links, db_session):
        payment_links.create_link.side_effect = PaymentLinkError("Stripe HTTP 500")
        budget = await make_budget(status="accepted")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)
        assert resp.status_code == 502

        budget = await reload(db_session, Budget, budget.id)
        assert budget.status == "accepted"
        assert budget.agreed_value is None

    async def test_list_payments(self, client, admin, make_budget):
        budget = await make_budget(status="accepted")
        await client.post(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)

        resp = await client.get(f"/api/v1/budgets/{budget.id}/payment", headers=ADMIN_HEADERS)
        assert resp.json()["type"] == "down_payment"

        resp = await client.get(f"/api/v1/budgets/{budget.id}/payments", headers=ADMIN_HEADERS)
        assert resp.json()["total"] == 1
