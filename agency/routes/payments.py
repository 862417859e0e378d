"""
Agency back-office — Payment confirmation: manual endpoint and Stripe webhook.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import require_manager
from agency.config import settings
from agency.database import get_db
from agency.dependencies import get_email_service
from agency.models.payment import Payment
from agency.models.user import User
from agency.schemas.budget import PaymentConfirmRequest
from agency.services.email_service import EmailService
from agency.services.payment_links import WebhookSignatureError, verify_webhook_signature
from agency.workflow.conversion import ConversionOrchestrator
from agency.workflow.errors import WorkflowError
from agency.workflow.status import PaymentType

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_secret() -> str:
    return settings.stripe_webhook_secret


@router.post("/confirm")
async def confirm_payment(
    req: PaymentConfirmRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manager),
    email_service: EmailService = Depends(get_email_service),
):
    """Record a confirmed payment: down payment converts the budget, final payment closes the project."""
    if not req.confirmed:
        raise HTTPException(400, "Only confirmed payments can be recorded")

    orchestrator = ConversionOrchestrator(db, email_service=email_service)
    result = await orchestrator.confirm(req.budget_id, req.type, actor=f"user:{user.id}")
    return {"success": True, **result.to_dict()}


# ═══════════════════════════════════════════════════════
#  Stripe webhook
# ═══════════════════════════════════════════════════════

async def _resolve_target(db: AsyncSession, session_obj: dict) -> tuple[str | None, str | None]:
    """(budget_id, type) from checkout metadata, else from the stored payment-link id."""
    metadata = session_obj.get("metadata") or {}
    budget_id = metadata.get("budget_id") or metadata.get("budgetId")
    payment_type = metadata.get("type")
    if budget_id and payment_type:
        return budget_id, payment_type

    link_id = session_obj.get("payment_link")
    if not link_id:
        return budget_id, payment_type
    result = await db.execute(select(Payment).where(Payment.stripe_payment_link_id == link_id))
    payment = result.scalar_one_or_none()
    if payment is None:
        return budget_id, payment_type
    return payment.budget_id, payment.type


@webhook_router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    secret: str = Depends(get_webhook_secret),
):
    payload = await request.body()
    if secret:
        try:
            verify_webhook_signature(payload, request.headers.get("stripe-signature"), secret)
        except WebhookSignatureError as e:
            logger.warning(f"⚠️ Rejected webhook: {e}")
            raise HTTPException(400, f"Invalid signature: {e}")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(400, "Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(400, "Webhook payload must be a JSON object")

    event_type = event.get("type")
    if event_type != "checkout.session.completed":
        logger.info(f"Webhook event ignored: {event_type}")
        return {"received": True, "processed": False}

    session_obj = (event.get("data") or {}).get("object") or {}
    budget_id, payment_type = await _resolve_target(db, session_obj)
    if not budget_id or payment_type not in {t.value for t in PaymentType}:
        logger.warning(f"⚠️ Checkout session {session_obj.get('id')} has no budget reference")
        return {"received": True, "processed": False, "detail": "No budget reference in session"}

    orchestrator = ConversionOrchestrator(db, email_service=email_service)
    try:
        result = await orchestrator.confirm(budget_id, PaymentType(payment_type), actor="webhook")
    except WorkflowError as e:
        logger.error(f"Webhook confirmation for budget {budget_id} failed: {e.message}")
        return {"received": True, "processed": False, "detail": e.message}

    provider_id = session_obj.get("payment_intent") or session_obj.get("id")
    if provider_id and result.payment.stripe_payment_id != provider_id:
        result.payment.stripe_payment_id = provider_id
        await db.commit()

    logger.info(f"💰 Webhook confirmed {payment_type} for budget {budget_id}")
    return {"received": True, "processed": True, **result.to_dict()}
