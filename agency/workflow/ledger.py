"""
Payment ledger — one Payment row per (budget, type).

Amounts always come from the budget's agreed value: the down payment is
``agreed_value * down_payment_rate`` and the final payment
``agreed_value * final_payment_rate``. The agreed value is snapshotted from
``final_value`` at the first money event, so later edits to the quote do
not break the split.
"""

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.config import settings
from agency.models.budget import Budget
from agency.models.common import utcnow
from agency.models.payment import Payment
from agency.workflow.errors import InvalidInputError
from agency.workflow.status import PaymentStatus, PaymentType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def split_amount(value: Decimal, rate: Decimal) -> Decimal:
    return (Decimal(value) * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)


class PaymentLedger:
    """Find-or-create access to a budget's staged payments."""

    def __init__(
        self,
        session: AsyncSession,
        down_payment_rate: Decimal | None = None,
        final_payment_rate: Decimal | None = None,
        due_days: int | None = None,
    ):
        self.session = session
        self.rates = {
            PaymentType.DOWN_PAYMENT: Decimal(down_payment_rate if down_payment_rate is not None else settings.down_payment_rate),
            PaymentType.FINAL_PAYMENT: Decimal(final_payment_rate if final_payment_rate is not None else settings.final_payment_rate),
        }
        self.due_days = due_days if due_days is not None else settings.payment_due_days

    # ── Amounts ─────────────────────────────────────────

    @staticmethod
    def snapshot_value(budget: Budget) -> Decimal:
        """Freeze the budget's value for payments on first use."""
        if budget.agreed_value is None:
            if not budget.final_value or Decimal(budget.final_value) <= 0:
                raise InvalidInputError("Project value is missing or zero")
            budget.agreed_value = Decimal(budget.final_value)
        return Decimal(budget.agreed_value)

    def amount_for(self, budget: Budget, payment_type: PaymentType) -> Decimal:
        return split_amount(self.snapshot_value(budget), self.rates[PaymentType(payment_type)])

    def describe(self, budget: Budget, payment_type: PaymentType) -> str:
        label = "Down payment" if payment_type is PaymentType.DOWN_PAYMENT else "Final payment"
        percent = self.rates[payment_type] * 100
        return f"{label} ({percent:.0f}%) - {budget.project_type} - {budget.client_name}"

    # ── Reads ───────────────────────────────────────────

    async def find(self, budget_id: str, payment_type: PaymentType) -> Payment | None:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.budget_id == budget_id)
            .where(Payment.type == PaymentType(payment_type).value)
        )
        return result.scalar_one_or_none()

    async def list_for_budget(self, budget_id: str) -> list[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.budget_id == budget_id).order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    # ── Writes ──────────────────────────────────────────

    async def upsert_payment(
        self,
        budget: Budget,
        payment_type: PaymentType,
        status: PaymentStatus,
        project_id: str | None = None,
        link: dict | None = None,
        description: str | None = None,
    ) -> Payment:
        """
        Create or update the (budget, type) payment row and flush it.

        A paid row never goes back to pending. The unique constraint on
        (budget_id, type) turns a concurrent double insert into an
        IntegrityError at flush time; callers roll back and retry.
        """
        payment_type = PaymentType(payment_type)
        status = PaymentStatus(status)
        amount = self.amount_for(budget, payment_type)
        now = utcnow()

        payment = await self.find(budget.id, payment_type)
        if payment is None:
            payment = Payment(
                budget_id=budget.id,
                type=payment_type.value,
                amount=amount,
                description=description or self.describe(budget, payment_type),
                status=PaymentStatus.PENDING.value,
                due_date=now + timedelta(days=self.due_days),
            )
            self.session.add(payment)
            logger.info(f"🧾 New {payment_type.value} for budget {budget.id}: {amount}")
        elif payment.status != PaymentStatus.PAID.value:
            payment.amount = amount

        if status is PaymentStatus.PAID:
            if payment.status != PaymentStatus.PAID.value:
                payment.status = PaymentStatus.PAID.value
                payment.paid_at = now
        elif link is not None and payment.status != PaymentStatus.PAID.value:
            # Fresh link for an unpaid row restarts its due date
            payment.due_date = now + timedelta(days=self.due_days)

        if link is not None:
            payment.stripe_payment_link_id = link.get("id")
            payment.stripe_payment_link_url = link.get("url")
        if project_id and not payment.project_id:
            payment.project_id = project_id

        await self.session.flush()
        return payment
