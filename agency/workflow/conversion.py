"""
Conversion orchestrator — turns a paid budget into a running project.

``confirm_down_payment`` resolves (or creates) the client, creates the
project, marks the down payment paid and annexes payment and contract to
the project. ``confirm_final_payment`` closes the project out. Each call
is one transaction: everything is flushed on the caller's session and
committed once at the end, or rolled back as a whole.

Redelivered or concurrent confirmations are safe. The budget row is
locked where the database supports it, and ``budgets.project_id`` is
claimed with ``UPDATE ... WHERE project_id IS NULL``. A caller that loses
that race (or trips a unique constraint) rolls back and runs again, which
lands on the top-up path for the project the winner created.

Email and in-app notifications go out after the commit and never undo it.
"""

import logging
import secrets
import time
import unicodedata
from dataclasses import dataclass, field

from sqlalchemy import or_, select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agency.config import settings
from agency.models.budget import Budget
from agency.models.client import Client, encode_contacts
from agency.models.common import utcnow
from agency.models.contract import Contract
from agency.models.payment import Payment
from agency.models.project import Project
from agency.models.user import ROLE_ADMIN, User
from agency.routes.activity import log_activity
from agency.services.email_service import (
    EmailService,
    build_down_payment_confirmed_email,
    build_final_payment_confirmed_email,
    format_money,
)
from agency.services.notifications import notify_managers
from agency.services.validators import AUTO_DOCUMENT_PREFIX
from agency.workflow.errors import ConflictError, InvalidTransitionError, NotFoundError
from agency.workflow.ledger import PaymentLedger
from agency.workflow.status import (
    BudgetEvent,
    BudgetStatus,
    PaymentStatus,
    PaymentType,
    ProjectEvent,
    ProjectStatus,
    apply_budget_event,
    apply_project_event,
    budget_status,
    can_apply_budget_event,
    project_status,
)

logger = logging.getLogger(__name__)

DEFAULT_LAST_NAME = "Cliente"

COMPLEXITY_MAP = {
    "simple": "simple",
    "simples": "simple",
    "medium": "medium",
    "medio": "medium",
    "complex": "complex",
    "complexo": "complex",
}

TIMELINE_MAP = {
    "urgent": "urgent",
    "urgente": "urgent",
    "normal": "normal",
    "flexible": "flexible",
    "flexivel": "flexible",
}


def _fold(value: str | None) -> str:
    text = unicodedata.normalize("NFKD", (value or "").strip().lower())
    return "".join(ch for ch in text if not unicodedata.combining(ch))


def normalize_complexity(value: str | None) -> str:
    return COMPLEXITY_MAP.get(_fold(value), "medium")


def normalize_timeline(value: str | None) -> str:
    return TIMELINE_MAP.get(_fold(value), "normal")


def split_name(full_name: str) -> tuple[str, str]:
    """'Maria Silva Santos' -> ('Maria', 'Silva Santos'); 'Maria' -> ('Maria', 'Cliente')."""
    parts = (full_name or "").split()
    if not parts:
        return full_name or "", DEFAULT_LAST_NAME
    return parts[0], " ".join(parts[1:]) or DEFAULT_LAST_NAME


def placeholder_document() -> str:
    return f"{AUTO_DOCUMENT_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class _LostRace(Exception):
    """Another request claimed the budget's project first."""


@dataclass
class ConversionResult:
    budget: Budget
    project: Project
    payment: Payment
    created: bool
    client: Client | None = None
    client_created: bool = False
    email_sent: bool = False
    email_error: str | None = None
    notified: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "budget_id": self.budget.id,
            "budget_status": self.budget.status,
            "project_id": self.project.id,
            "project_status": self.project.status,
            "payment_id": self.payment.id,
            "payment_type": self.payment.type,
            "amount": self.payment.amount,
            "created": self.created,
            "client_id": self.client.id if self.client else self.project.client_id,
            "client_created": self.client_created,
            "email_sent": self.email_sent,
            "email_error": self.email_error,
        }


class ConversionOrchestrator:
    """Runs the payment-confirmed side of the budget lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        email_service: EmailService | None = None,
        ledger: PaymentLedger | None = None,
        app_url: str | None = None,
    ):
        self.session = session
        self.email_service = email_service
        self.ledger = ledger or PaymentLedger(session)
        self.app_url = (app_url or settings.app_url).rstrip("/")

    # ═══════════════════════════════════════════════════
    #  Entry points
    # ═══════════════════════════════════════════════════

    async def confirm(self, budget_id: str, payment_type: PaymentType, actor: str = "system") -> ConversionResult:
        if PaymentType(payment_type) is PaymentType.DOWN_PAYMENT:
            return await self.confirm_down_payment(budget_id, actor=actor)
        return await self.confirm_final_payment(budget_id, actor=actor)

    async def confirm_down_payment(self, budget_id: str, actor: str = "system") -> ConversionResult:
        result = await self._in_transaction(self._convert, budget_id, actor)
        if result.created:
            await self._after_conversion(result)
        return result

    async def confirm_final_payment(self, budget_id: str, actor: str = "system") -> ConversionResult:
        result = await self._in_transaction(self._complete, budget_id, actor)
        if result.created:
            await self._after_completion(result)
        return result

    async def _in_transaction(self, step, budget_id: str, actor: str) -> ConversionResult:
        """Run ``step`` and commit; on a lost race roll back and run it once more."""
        for attempt in (1, 2):
            try:
                result = await step(budget_id, actor)
                await self.session.commit()
                return result
            except (IntegrityError, _LostRace) as e:
                await self.session.rollback()
                if attempt == 2:
                    raise ConflictError("Budget is being updated by another request, try again") from e
                logger.warning(f"⚠️ Concurrent confirmation on budget {budget_id}, retrying: {e}")
            except Exception:
                await self.session.rollback()
                raise

    # ═══════════════════════════════════════════════════
    #  Down payment → project
    # ═══════════════════════════════════════════════════

    async def _convert(self, budget_id: str, actor: str) -> ConversionResult:
        budget = await self._lock_budget(budget_id)

        if budget.project_id:
            return await self._top_up_down_payment(budget)

        if budget_status(budget.status) is BudgetStatus.DOWN_PAYMENT_PAID:
            # Paid earlier without a project ever being linked
            target = BudgetStatus.DOWN_PAYMENT_PAID
        else:
            target = apply_budget_event(budget.status, BudgetEvent.DOWN_PAYMENT_CONFIRMED)

        agreed = self.ledger.snapshot_value(budget)
        client, client_created = await self.resolve_client(budget)
        creator = await self.resolve_creator()

        project = Project(
            name=f"{budget.project_type} - {budget.client_name}",
            description=budget.details or f"Project started after down payment - {budget.client_name}",
            type=budget.project_type,
            status=ProjectStatus.PLANNING.value,
            progress=0,
            complexity=normalize_complexity(budget.complexity),
            timeline=normalize_timeline(budget.timeline),
            budget=agreed,
            client_id=client.id,
            client_name=budget.client_name,
            created_by_id=creator.id if creator else None,
        )
        self.session.add(project)
        await self.session.flush()

        claimed = await self.session.execute(
            update(Budget)
            .where(Budget.id == budget.id)
            .where(Budget.project_id.is_(None))
            .values(project_id=project.id, status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise _LostRace(f"budget {budget.id} already has a project")
        await self.session.refresh(budget)

        payment = await self.ledger.upsert_payment(
            budget, PaymentType.DOWN_PAYMENT, PaymentStatus.PAID, project_id=project.id
        )
        await self._annex_contract(budget, project.id)

        await log_activity(
            self.session,
            entity_type="budget", entity_id=budget.id,
            action="converted", icon="🚀",
            description=f"Down payment confirmed — project '{project.name}' created",
            actor=actor,
            metadata={"project_id": project.id, "payment_id": payment.id, "amount": str(payment.amount)},
        )
        logger.info(f"🚀 Budget {budget.id} converted into project {project.id} ({project.name})")
        return ConversionResult(
            budget=budget, project=project, payment=payment, created=True,
            client=client, client_created=client_created,
        )

    async def _top_up_down_payment(self, budget: Budget) -> ConversionResult:
        project = await self.session.get(Project, budget.project_id)
        if project is None:
            raise NotFoundError(f"Project {budget.project_id} linked to budget {budget.id} not found")

        payment = await self.ledger.upsert_payment(
            budget, PaymentType.DOWN_PAYMENT, PaymentStatus.PAID, project_id=project.id
        )
        if can_apply_budget_event(budget.status, BudgetEvent.DOWN_PAYMENT_CONFIRMED):
            budget.status = BudgetStatus.DOWN_PAYMENT_PAID.value
        await self._annex_contract(budget, project.id)
        await self.session.flush()

        logger.info(f"🔁 Budget {budget.id} already converted into project {project.id} — links topped up")
        return ConversionResult(budget=budget, project=project, payment=payment, created=False)

    # ═══════════════════════════════════════════════════
    #  Final payment → completed
    # ═══════════════════════════════════════════════════

    async def _complete(self, budget_id: str, actor: str) -> ConversionResult:
        budget = await self._lock_budget(budget_id)
        if not budget.project_id:
            raise InvalidTransitionError("Budget has no project yet — confirm the down payment first")

        project = await self.session.get(Project, budget.project_id, with_for_update=True)
        if project is None:
            raise NotFoundError(f"Project {budget.project_id} linked to budget {budget.id} not found")

        if project_status(project.status) is ProjectStatus.COMPLETED:
            payment = await self.ledger.upsert_payment(
                budget, PaymentType.FINAL_PAYMENT, PaymentStatus.PAID, project_id=project.id
            )
            if can_apply_budget_event(budget.status, BudgetEvent.FINAL_PAYMENT_CONFIRMED):
                budget.status = BudgetStatus.COMPLETED.value
            await self._annex_contract(budget, project.id)
            await self.session.flush()
            logger.info(f"🔁 Project {project.id} already completed — links topped up")
            return ConversionResult(budget=budget, project=project, payment=payment, created=False)

        project_target = apply_project_event(project.status, ProjectEvent.FINAL_PAYMENT_CONFIRMED)
        budget_target = apply_budget_event(budget.status, BudgetEvent.FINAL_PAYMENT_CONFIRMED)

        payment = await self.ledger.upsert_payment(
            budget, PaymentType.FINAL_PAYMENT, PaymentStatus.PAID, project_id=project.id
        )
        now = utcnow()
        project.status = project_target.value
        project.progress = 100
        project.completed_at = now
        budget.status = budget_target.value
        await self._annex_contract(budget, project.id)

        await log_activity(
            self.session,
            entity_type="project", entity_id=project.id,
            action="completed", icon="🏁",
            description=f"Final payment confirmed — '{project.name}' completed",
            actor=actor,
            metadata={"budget_id": budget.id, "payment_id": payment.id, "amount": str(payment.amount)},
        )
        await self.session.flush()
        logger.info(f"🏁 Project {project.id} completed (budget {budget.id})")
        return ConversionResult(budget=budget, project=project, payment=payment, created=True)

    # ═══════════════════════════════════════════════════
    #  Lookups
    # ═══════════════════════════════════════════════════

    async def _lock_budget(self, budget_id: str) -> Budget:
        result = await self.session.execute(
            select(Budget)
            .where(Budget.id == budget_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        budget = result.scalar_one_or_none()
        if budget is None:
            raise NotFoundError(f"Budget {budget_id} not found")
        return budget

    async def resolve_client(self, budget: Budget) -> tuple[Client, bool]:
        """Existing client by email (preferred) or exact name, else a new one."""
        email = (budget.client_email or "").strip().lower()
        conditions = [Client.name == budget.client_name]
        if email:
            conditions.append(func.lower(Client.emails).like(f"%{email}%"))

        result = await self.session.execute(
            select(Client).where(or_(*conditions)).order_by(Client.created_at.asc())
        )
        candidates = list(result.scalars().all())
        if email:
            for candidate in candidates:
                if candidate.has_email(email):
                    return candidate, False
        for candidate in candidates:
            if candidate.name == budget.client_name:
                return candidate, False

        first_name, last_name = split_name(budget.client_name)
        client = Client(
            name=budget.client_name,
            first_name=first_name,
            last_name=last_name,
            document_type="cpf",
            document=placeholder_document(),
            emails=encode_contacts(
                [{"id": "1", "value": budget.client_email, "type": "pessoal", "isPrimary": True}]
                if budget.client_email else None
            ),
            phones=encode_contacts(
                [{"id": "1", "value": budget.client_phone, "type": "whatsapp", "isPrimary": True}]
                if budget.client_phone else None
            ),
            company=budget.company,
            notes=f"Company: {budget.company}" if budget.company else None,
            status="active",
        )
        self.session.add(client)
        await self.session.flush()
        logger.info(f"👤 Client {client.id} created for {client.name}")
        return client, True

    async def resolve_creator(self) -> User | None:
        result = await self.session.execute(
            select(User).where(User.role == ROLE_ADMIN).order_by(User.created_at.asc()).limit(1)
        )
        user = result.scalar_one_or_none()
        if user is None:
            result = await self.session.execute(select(User).order_by(User.created_at.asc()).limit(1))
            user = result.scalar_one_or_none()
        return user

    async def _annex_contract(self, budget: Budget, project_id: str) -> Contract | None:
        result = await self.session.execute(select(Contract).where(Contract.budget_id == budget.id))
        contract = result.scalar_one_or_none()
        if contract is None:
            return None
        if not contract.project_id:
            contract.project_id = project_id
        if contract.status != "signed":
            contract.status = "signed"
            contract.signed_at = utcnow()
        contract.confirmed = True
        return contract

    # ═══════════════════════════════════════════════════
    #  Best-effort follow-ups (after commit)
    # ═══════════════════════════════════════════════════

    async def _email(self, to: str, subject: str, html: str, result: ConversionResult) -> None:
        if self.email_service is None:
            result.email_error = "Email service not configured"
            return
        try:
            outcome = await self.email_service.send_email(to, subject, html)
        except Exception as e:
            logger.error(f"Email to {to} failed: {e}")
            outcome = {"success": False, "message": str(e)}
        result.email_sent = bool(outcome.get("success"))
        if not result.email_sent:
            result.email_error = outcome.get("message")

    async def _after_conversion(self, result: ConversionResult) -> None:
        budget, project = result.budget, result.project
        company = self.email_service.company_name if self.email_service else settings.company_name
        subject, html = build_down_payment_confirmed_email(
            client_name=budget.client_name,
            project_type=budget.project_type,
            total=format_money(budget.agreed_value),
            paid=format_money(result.payment.amount),
            remaining=format_money(self.ledger.amount_for(budget, PaymentType.FINAL_PAYMENT)),
            company_name=company,
        )
        await self._email(budget.client_email, subject, html, result)

        notes = await notify_managers(
            self.session,
            title="Down payment confirmed",
            message=f"{budget.client_name} paid the down payment. Project '{project.name}' was created.",
            type="success",
            category="payment",
            link=f"/projects/{project.id}",
            metadata={"budget_id": budget.id, "project_id": project.id},
        )
        result.notified = [n.user_id for n in notes]

    async def _after_completion(self, result: ConversionResult) -> None:
        budget, project = result.budget, result.project
        company = self.email_service.company_name if self.email_service else settings.company_name
        subject, html = build_final_payment_confirmed_email(
            client_name=budget.client_name,
            project_name=project.name,
            total=format_money(budget.agreed_value),
            paid=format_money(result.payment.amount),
            schedule_url=f"{self.app_url}/projects/{project.id}/schedule",
            company_name=company,
        )
        await self._email(budget.client_email, subject, html, result)

        notes = await notify_managers(
            self.session,
            title="Final payment confirmed",
            message=f"{budget.client_name} paid the final payment. '{project.name}' is completed.",
            type="success",
            category="payment",
            link=f"/projects/{project.id}",
            metadata={"budget_id": budget.id, "project_id": project.id},
        )
        result.notified = [n.user_id for n in notes]
