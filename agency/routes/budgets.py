"""
Agency back-office — Budget (quote) API routes.

Quote requests, proposal sending and client approval, internal review,
contract issuing and the down-payment link.
"""

import logging
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import get_current_user, require_manager
from agency.config import settings
from agency.database import get_db
from agency.dependencies import get_email_service, get_payment_links
from agency.models.budget import Budget
from agency.models.common import as_utc, utcnow
from agency.models.contract import Contract
from agency.models.user import User
from agency.routes.activity import log_activity
from agency.schemas.budget import (
    BudgetCreateRequest,
    BudgetReviewRequest,
    BudgetUpdateRequest,
    ContractCreateRequest,
    ProposalAnswerRequest,
    SendProposalRequest,
)
from agency.services.email_service import (
    EmailService,
    build_contract_email,
    build_payment_link_email,
    build_proposal_email,
    format_money,
)
from agency.services.notifications import create_notification, notify_managers
from agency.services.payment_links import PaymentLinkClient, PaymentLinkError
from agency.services.whatsapp import build_whatsapp_url
from agency.workflow.ledger import PaymentLedger
from agency.workflow.status import (
    BudgetEvent,
    BudgetStatus,
    PaymentStatus,
    PaymentType,
    apply_budget_event,
    budget_reached,
    budget_status,
    can_apply_budget_event,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/budgets", tags=["budgets"])


async def _get_budget(db: AsyncSession, budget_id: str) -> Budget:
    budget = await db.get(Budget, budget_id)
    if not budget:
        raise HTTPException(404, f"Budget {budget_id} not found")
    return budget


async def _get_by_token(db: AsyncSession, token: str) -> Budget:
    result = await db.execute(select(Budget).where(Budget.approval_token == token))
    budget = result.scalar_one_or_none()
    if not budget:
        raise HTTPException(404, "Proposal not found or link already used")
    return budget


def _public_view(budget: Budget) -> dict:
    """Limited proposal view for the client (no internal review data)."""
    expires = as_utc(budget.approval_token_expires)
    return {
        "id": budget.id,
        "client_name": budget.client_name,
        "company": budget.company,
        "project_type": budget.project_type,
        "complexity": budget.complexity,
        "timeline": budget.timeline,
        "features": budget.features or [],
        "details": budget.details,
        "final_value": budget.final_value,
        "status": budget.status,
        "expires_at": expires,
        "expired": bool(expires and expires < utcnow()),
    }


async def _send(email_service: EmailService, to: str, subject: str, html: str) -> tuple[bool, str | None]:
    outcome = await email_service.send_email(to, subject, html)
    if outcome.get("success"):
        return True, None
    return False, outcome.get("message")


# ═══════════════════════════════════════════════════════
#  Budget CRUD
# ═══════════════════════════════════════════════════════

@router.post("", status_code=201)
async def create_budget(req: BudgetCreateRequest, db: AsyncSession = Depends(get_db)):
    """Public quote request — lands as a pending budget."""
    budget = Budget(
        client_name=req.client_name,
        client_email=str(req.client_email),
        client_phone=req.client_phone,
        company=req.company,
        project_type=req.project_type,
        complexity=req.complexity,
        timeline=req.timeline,
        features=req.features,
        details=req.details,
        estimated_min=req.estimated_min,
        estimated_max=req.estimated_max,
        status=BudgetStatus.PENDING.value,
    )
    db.add(budget)
    await db.flush()
    await log_activity(
        db, entity_type="budget", entity_id=budget.id,
        action="created", icon="🧮",
        description=f"Quote requested by {budget.client_name} — {budget.project_type}",
        actor=f"client:{budget.client_name}",
    )
    await db.commit()
    await db.refresh(budget)
    logger.info(f"✅ Budget created: {budget.id} for {budget.client_name}")
    return budget.to_dict()


@router.get("")
async def list_budgets(
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = select(Budget).order_by(Budget.created_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Budget.status == budget_status(status).value)
    result = await db.execute(stmt)
    budgets = result.scalars().all()
    return {"budgets": [b.to_dict() for b in budgets], "total": len(budgets)}


@router.get("/token/{token}")
async def get_budget_by_token(token: str, db: AsyncSession = Depends(get_db)):
    """Public endpoint: proposal details for the approval page."""
    budget = await _get_by_token(db, token)
    return _public_view(budget)


@router.put("/approve/{token}")
async def answer_proposal(
    token: str,
    req: ProposalAnswerRequest,
    db: AsyncSession = Depends(get_db),
):
    """Public endpoint: the client accepts or rejects the proposal."""
    budget = await _get_by_token(db, token)

    expires = as_utc(budget.approval_token_expires)
    if expires and expires < utcnow():
        raise HTTPException(400, "This proposal link has expired. Please ask for a new one.")
    if budget_status(budget.status) not in (BudgetStatus.PENDING, BudgetStatus.SENT):
        raise HTTPException(400, "This proposal has already been answered")

    event = BudgetEvent.CLIENT_APPROVED if req.accepted else BudgetEvent.CLIENT_REJECTED
    budget.status = apply_budget_event(budget.status, event).value
    budget.approval_token = None
    budget.approval_token_expires = None
    if req.accepted:
        budget.client_approved_at = utcnow()

    verb = "accepted" if req.accepted else "rejected"
    await log_activity(
        db, entity_type="budget", entity_id=budget.id,
        action=verb, icon="✅" if req.accepted else "❌",
        description=f"Proposal {verb} by {budget.client_name}",
        actor=f"client:{budget.client_name}",
    )
    await db.commit()
    logger.info(f"📨 Proposal {budget.id} {verb} by client")

    await notify_managers(
        db,
        title=f"Proposal {verb}",
        message=f"{budget.client_name} {verb} the proposal for {budget.project_type}.",
        type="success" if req.accepted else "warning",
        category="budget",
        link=f"/budgets/{budget.id}",
        metadata={"budget_id": budget.id},
    )
    return {"success": True, "status": budget.status}


@router.get("/{budget_id}")
async def get_budget(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    budget = await _get_budget(db, budget_id)
    return budget.to_dict()


@router.patch("/{budget_id}")
async def update_budget(
    budget_id: str,
    req: BudgetUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Contact, scope and pricing fields only — status moves through the workflow."""
    budget = await _get_budget(db, budget_id)

    update_data = req.model_dump(exclude_unset=True)
    if "client_email" in update_data and update_data["client_email"] is not None:
        update_data["client_email"] = str(update_data["client_email"])
    for key, value in update_data.items():
        setattr(budget, key, value)

    changed_fields = list(update_data.keys())
    await log_activity(
        db, entity_type="budget", entity_id=budget.id,
        action="updated", icon="✏️",
        description=f"Budget updated — changed: {', '.join(changed_fields)}",
        actor=f"user:{user.id}",
        metadata={"changed_fields": changed_fields},
    )
    await db.commit()
    await db.refresh(budget)
    return budget.to_dict()


@router.delete("/{budget_id}", status_code=204)
async def delete_budget(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    budget = await _get_budget(db, budget_id)
    # Deletable until a contract goes out
    if budget.project_id or budget_reached(budget.status, BudgetStatus.CONTRACT_SENT):
        raise HTTPException(400, f"Cannot delete a budget in status '{budget.status}'")
    await db.delete(budget)
    await log_activity(
        db, entity_type="budget", entity_id=budget_id,
        action="deleted", icon="🗑️",
        description=f"Budget for {budget.client_name} deleted",
        actor=f"user:{user.id}",
    )
    await db.commit()


# ═══════════════════════════════════════════════════════
#  Proposal & review
# ═══════════════════════════════════════════════════════

@router.post("/{budget_id}/send-proposal")
async def send_proposal(
    budget_id: str,
    req: SendProposalRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
):
    budget = await _get_budget(db, budget_id)
    budget.status = apply_budget_event(budget.status, BudgetEvent.PROPOSAL_SENT).value
    budget.approval_token = f"approval_{budget.id}_{secrets.token_urlsafe(16)}"
    budget.approval_token_expires = utcnow() + timedelta(days=settings.approval_token_days)

    await log_activity(
        db, entity_type="budget", entity_id=budget.id,
        action="sent", icon="📤",
        description=f"Proposal sent to {budget.client_email}",
        actor=f"user:{user.id}",
    )
    await db.commit()
    await db.refresh(budget)

    approval_url = f"{settings.app_url.rstrip('/')}/budget/approve/{budget.approval_token}"
    value = format_money(budget.final_value or budget.estimated_max)

    email_sent, email_error = False, None
    if req.send_email:
        subject, html = build_proposal_email(
            client_name=budget.client_name,
            project_type=budget.project_type,
            value=value,
            approval_url=approval_url,
            valid_days=settings.approval_token_days,
            company_name=email_service.company_name,
        )
        email_sent, email_error = await _send(email_service, budget.client_email, subject, html)

    whatsapp_url = None
    if req.send_whatsapp:
        whatsapp_url = build_whatsapp_url(
            budget.client_phone,
            f"Hi {budget.client_name}! Your proposal for {budget.project_type} ({value}) is ready: {approval_url}",
            settings.whatsapp_country_code,
        )

    logger.info(f"📤 Proposal {budget.id} sent (email={email_sent})")
    return {
        "success": True,
        "budget": budget.to_dict(),
        "approval_url": approval_url,
        "email_sent": email_sent,
        "email_error": email_error,
        "whatsapp_url": whatsapp_url,
    }


@router.post("/{budget_id}/review")
async def review_budget(
    budget_id: str,
    req: BudgetReviewRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manager),
):
    """Internal accept/decline of a fresh quote request."""
    budget = await _get_budget(db, budget_id)
    if budget_status(budget.status) is not BudgetStatus.PENDING:
        raise HTTPException(400, "Only pending budgets can be reviewed")

    now = utcnow()
    if req.action == "accept":
        budget.accepted_by = user.id
        budget.accepted_at = now
        title, message = "Budget accepted", f"{user.name} accepted the quote from {budget.client_name}."
    else:
        budget.declined_by = user.id
        budget.declined_at = now
        budget.decline_reason = req.reason
        title = "Budget declined"
        message = f"{user.name} declined the quote from {budget.client_name}."
        if req.reason:
            message += f" Reason: {req.reason}"

    await log_activity(
        db, entity_type="budget", entity_id=budget.id,
        action=f"review_{req.action}", icon="🧐",
        description=message,
        actor=f"user:{user.id}",
        metadata={"reason": req.reason} if req.reason else None,
    )
    await db.commit()
    await db.refresh(budget)

    if budget.user_id:
        await create_notification(
            db, budget.user_id, title, message,
            type="success" if req.action == "accept" else "warning",
            category="budget",
            link=f"/budgets/{budget.id}",
            metadata={"budget_id": budget.id},
        )
    return budget.to_dict()


# ═══════════════════════════════════════════════════════
#  Contract
# ═══════════════════════════════════════════════════════

@router.post("/{budget_id}/contract", status_code=201)
async def create_contract(
    budget_id: str,
    req: ContractCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
):
    """Issue (or re-issue) the budget's contract."""
    budget = await _get_budget(db, budget_id)
    target = apply_budget_event(budget.status, BudgetEvent.CONTRACT_SENT)

    if req.final_value is not None:
        budget.final_value = req.final_value

    result = await db.execute(select(Contract).where(Contract.budget_id == budget.id))
    contract = result.scalar_one_or_none()
    if contract is None:
        contract = Contract(budget_id=budget.id)
        db.add(contract)
    contract.content = req.content
    contract.status = "pending"
    contract.sent_at = None
    budget.status = target.value

    await db.flush()
    await log_activity(
        db, entity_type="contract", entity_id=contract.id,
        action="created", icon="📝",
        description=f"Contract issued for {budget.client_name} — {budget.project_type}",
        actor=f"user:{user.id}",
        metadata={"budget_id": budget.id},
    )
    await db.commit()

    sign_url = f"{settings.app_url.rstrip('/')}/contracts/{contract.id}/sign"
    email_sent, email_error = False, None
    if req.send_email:
        subject, html = build_contract_email(
            client_name=budget.client_name,
            project_type=budget.project_type,
            sign_url=sign_url,
            company_name=email_service.company_name,
        )
        email_sent, email_error = await _send(email_service, budget.client_email, subject, html)
        if email_sent:
            contract.status = "sent"
            contract.sent_at = utcnow()
            await db.commit()

    whatsapp_url = None
    if req.send_whatsapp:
        whatsapp_url = build_whatsapp_url(
            budget.client_phone,
            f"Hi {budget.client_name}! Your contract for {budget.project_type} is ready to sign: {sign_url}",
            settings.whatsapp_country_code,
        )

    await db.refresh(contract)
    return {
        "success": True,
        "contract": contract.to_dict(),
        "budget_status": budget.status,
        "sign_url": sign_url,
        "email_sent": email_sent,
        "email_error": email_error,
        "whatsapp_url": whatsapp_url,
    }


@router.get("/{budget_id}/contract")
async def get_contract(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    await _get_budget(db, budget_id)
    result = await db.execute(select(Contract).where(Contract.budget_id == budget_id))
    contract = result.scalar_one_or_none()
    if not contract:
        raise HTTPException(404, "No contract for this budget")
    return contract.to_dict()


@router.post("/{budget_id}/contract/confirm")
async def confirm_contract(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(require_manager)):
    """Internal countersignature."""
    budget = await _get_budget(db, budget_id)
    result = await db.execute(select(Contract).where(Contract.budget_id == budget_id))
    contract = result.scalar_one_or_none()
    if not contract:
        raise HTTPException(404, "No contract for this budget")

    contract.confirmed = True
    contract.status = "signed"
    if not contract.signed_at:
        contract.signed_at = utcnow()
    if can_apply_budget_event(budget.status, BudgetEvent.CONTRACT_SIGNED):
        budget.status = BudgetStatus.CONTRACT_SIGNED.value

    await log_activity(
        db, entity_type="contract", entity_id=contract.id,
        action="confirmed", icon="🤝",
        description=f"Contract confirmed by {user.name}",
        actor=f"user:{user.id}",
    )
    await db.commit()
    await db.refresh(contract)
    return contract.to_dict()


# ═══════════════════════════════════════════════════════
#  Down payment
# ═══════════════════════════════════════════════════════

@router.post("/{budget_id}/payment")
async def create_down_payment_link(
    budget_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
    payment_links: PaymentLinkClient = Depends(get_payment_links),
):
    budget = await _get_budget(db, budget_id)
    ledger = PaymentLedger(db)

    existing = await ledger.find(budget.id, PaymentType.DOWN_PAYMENT)
    if existing and existing.status == PaymentStatus.PAID.value:
        return {"success": True, "message": "Down payment already confirmed", "payment_link": None}

    target = apply_budget_event(budget.status, BudgetEvent.DOWN_PAYMENT_REQUESTED)
    amount = ledger.amount_for(budget, PaymentType.DOWN_PAYMENT)
    description = ledger.describe(budget, PaymentType.DOWN_PAYMENT)

    try:
        link = await payment_links.create_link(
            amount,
            description,
            {"budget_id": budget.id, "type": PaymentType.DOWN_PAYMENT.value, "client_name": budget.client_name},
        )
    except PaymentLinkError as e:
        logger.error(f"Payment link for budget {budget.id} failed: {e}")
        raise HTTPException(502, f"Payment provider error: {e}")

    payment = await ledger.upsert_payment(
        budget, PaymentType.DOWN_PAYMENT, PaymentStatus.PENDING, link=link, description=description
    )
    budget.status = target.value
    await log_activity(
        db, entity_type="payment", entity_id=payment.id,
        action="link_created", icon="💳",
        description=f"Down payment link for {format_money(amount)} sent to {budget.client_name}",
        actor=f"user:{user.id}",
        metadata={"budget_id": budget.id, "payment_link_id": link["id"]},
    )
    await db.commit()
    await db.refresh(payment)

    subject, html = build_payment_link_email(
        client_name=budget.client_name,
        project_name=budget.project_type,
        label="Down payment",
        amount=format_money(amount),
        pay_url=link["url"],
        company_name=email_service.company_name,
    )
    email_sent, email_error = await _send(email_service, budget.client_email, subject, html)

    return {
        "success": True,
        "payment": payment.to_dict(),
        "payment_link": link["url"],
        "budget_status": budget.status,
        "email_sent": email_sent,
        "email_error": email_error,
    }


@router.get("/{budget_id}/payment")
async def get_down_payment(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    await _get_budget(db, budget_id)
    payment = await PaymentLedger(db).find(budget_id, PaymentType.DOWN_PAYMENT)
    if not payment:
        raise HTTPException(404, "No down payment for this budget")
    return payment.to_dict()


@router.get("/{budget_id}/payments")
async def list_budget_payments(budget_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    await _get_budget(db, budget_id)
    payments = await PaymentLedger(db).list_for_budget(budget_id)
    return {"payments": [p.to_dict() for p in payments], "total": len(payments)}
