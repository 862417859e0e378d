"""
Agency back-office — Project API routes.

Project tracking, progress notifications, the final-payment link and
delivery scheduling.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import get_current_user
from agency.config import settings
from agency.database import get_db
from agency.dependencies import get_email_service, get_payment_links
from agency.models.budget import Budget
from agency.models.client import Client
from agency.models.project import Project, Schedule
from agency.models.user import User
from agency.routes.activity import log_activity
from agency.schemas.project import (
    ProgressNotifyRequest,
    ProjectUpdateRequest,
    RescheduleAskRequest,
    RescheduleRequest,
    ScheduleRequest,
)
from agency.services.email_service import (
    EmailService,
    build_payment_link_email,
    build_progress_email,
    build_schedule_email,
    format_money,
)
from agency.services.notifications import notify_managers
from agency.services.payment_links import PaymentLinkClient, PaymentLinkError
from agency.services.whatsapp import build_whatsapp_url
from agency.workflow.ledger import PaymentLedger
from agency.workflow.status import (
    SCHEDULABLE,
    BudgetEvent,
    PaymentStatus,
    PaymentType,
    ProjectEvent,
    apply_budget_event,
    apply_project_event,
    progress_status,
    project_status,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/projects", tags=["projects"])

PROGRESS_MESSAGES = {
    20: "Planning is done and development has started. The foundations of your project are in place.",
    50: "We are halfway there. The main features are being built.",
    70: "Most of the work is done. We are polishing details and testing.",
    100: "Development is complete! We are preparing the delivery.",
}


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    project = await db.get(Project, project_id)
    if not project:
        raise HTTPException(404, f"Project {project_id} not found")
    return project


async def _budget_for(db: AsyncSession, project: Project) -> Budget | None:
    result = await db.execute(select(Budget).where(Budget.project_id == project.id))
    return result.scalar_one_or_none()


async def _get_schedule(db: AsyncSession, project_id: str) -> Schedule | None:
    result = await db.execute(select(Schedule).where(Schedule.project_id == project_id))
    return result.scalar_one_or_none()


async def _recipient(db: AsyncSession, project: Project) -> tuple[str | None, str | None, str]:
    """(email, phone, name) — budget contact first, then the client's primaries."""
    budget = await _budget_for(db, project)
    email = budget.client_email if budget else None
    phone = budget.client_phone if budget else None
    name = budget.client_name if budget else project.client_name
    if not email or not phone:
        client = await db.get(Client, project.client_id)
        if client:
            email = email or client.primary_email
            phone = phone or client.primary_phone
            name = name or client.name
    return email, phone, name or ""


async def _send(email_service: EmailService, to: str | None, subject: str, html: str) -> tuple[bool, str | None]:
    if not to:
        return False, "No email address for this client"
    outcome = await email_service.send_email(to, subject, html)
    if outcome.get("success"):
        return True, None
    return False, outcome.get("message")


# ═══════════════════════════════════════════════════════
#  Project CRUD
# ═══════════════════════════════════════════════════════

@router.get("")
async def list_projects(
    status: str | None = Query(None),
    client_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = select(Project).order_by(Project.created_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Project.status == project_status(status).value)
    if client_id:
        stmt = stmt.where(Project.client_id == client_id)
    result = await db.execute(stmt)
    projects = result.scalars().all()
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


@router.get("/{project_id}")
async def get_project(project_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    project = await _get_project(db, project_id)
    budget = await _budget_for(db, project)
    payments = await PaymentLedger(db).list_for_budget(budget.id) if budget else []
    return {
        **project.to_dict(),
        "budget_id": budget.id if budget else None,
        "payments": [p.to_dict() for p in payments],
    }


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    req: ProjectUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Descriptive fields and dates only — status and progress follow the workflow."""
    project = await _get_project(db, project_id)
    update_data = req.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(project, key, value)

    changed_fields = list(update_data.keys())
    await log_activity(
        db, entity_type="project", entity_id=project.id,
        action="updated", icon="✏️",
        description=f"Project updated — changed: {', '.join(changed_fields)}",
        actor=f"user:{user.id}",
        metadata={"changed_fields": changed_fields},
    )
    await db.commit()
    await db.refresh(project)
    return project.to_dict()


# ═══════════════════════════════════════════════════════
#  Progress
# ═══════════════════════════════════════════════════════

@router.post("/{project_id}/notify-progress")
async def notify_progress(
    project_id: str,
    req: ProgressNotifyRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Report a progress step (20/50/70/100) to the client.

    Lower than the current progress is refused; the same value only
    re-sends the notification.
    """
    project = await _get_project(db, project_id)
    progress_status(req.progress)
    target = apply_project_event(project.status, ProjectEvent.PROGRESS_REPORTED, progress=req.progress)

    current = project.progress or 0
    if req.progress < current:
        raise HTTPException(400, f"Progress cannot go back from {current}% to {req.progress}%")

    changed = req.progress > current
    if changed:
        project.status = target.value
        project.progress = req.progress
        await log_activity(
            db, entity_type="project", entity_id=project.id,
            action="progress", icon="📈",
            description=f"Progress updated to {req.progress}%",
            actor=f"user:{user.id}",
            metadata={"from": current, "to": req.progress},
        )
        await db.commit()
        await db.refresh(project)
        logger.info(f"📈 Project {project.id} at {req.progress}%")

    email, phone, name = await _recipient(db, project)
    message = req.custom_message or PROGRESS_MESSAGES[req.progress]

    email_sent, email_error = False, None
    if req.send_email:
        subject, html = build_progress_email(
            client_name=name,
            project_name=project.name,
            progress=req.progress,
            message=message,
            company_name=email_service.company_name,
        )
        email_sent, email_error = await _send(email_service, email, subject, html)

    whatsapp_url = None
    if req.send_whatsapp:
        whatsapp_url = build_whatsapp_url(
            phone,
            f"Hi {name}! {project.name} is {req.progress}% complete. {message}",
            settings.whatsapp_country_code,
        )

    return {
        "success": True,
        "changed": changed,
        "project": project.to_dict(),
        "email_sent": email_sent,
        "email_error": email_error,
        "whatsapp_url": whatsapp_url,
    }


# ═══════════════════════════════════════════════════════
#  Final payment link
# ═══════════════════════════════════════════════════════

@router.post("/{project_id}/final-payment")
async def create_final_payment_link(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
    payment_links: PaymentLinkClient = Depends(get_payment_links),
):
    project = await _get_project(db, project_id)
    budget = await _budget_for(db, project)
    if budget is None:
        raise HTTPException(404, "No budget linked to this project")

    ledger = PaymentLedger(db)
    existing = await ledger.find(budget.id, PaymentType.FINAL_PAYMENT)
    if existing and existing.status == PaymentStatus.PAID.value:
        return {"success": True, "message": "Final payment already confirmed", "payment_link": None}

    project_target = apply_project_event(project.status, ProjectEvent.FINAL_PAYMENT_REQUESTED)
    budget_target = apply_budget_event(budget.status, BudgetEvent.FINAL_PAYMENT_REQUESTED)
    amount = ledger.amount_for(budget, PaymentType.FINAL_PAYMENT)
    description = ledger.describe(budget, PaymentType.FINAL_PAYMENT)

    try:
        link = await payment_links.create_link(
            amount,
            description,
            {
                "budget_id": budget.id,
                "project_id": project.id,
                "type": PaymentType.FINAL_PAYMENT.value,
                "client_name": budget.client_name,
            },
        )
    except PaymentLinkError as e:
        logger.error(f"Final payment link for project {project.id} failed: {e}")
        raise HTTPException(502, f"Payment provider error: {e}")

    payment = await ledger.upsert_payment(
        budget, PaymentType.FINAL_PAYMENT, PaymentStatus.PENDING,
        project_id=project.id, link=link, description=description,
    )
    project.status = project_target.value
    budget.status = budget_target.value
    await log_activity(
        db, entity_type="payment", entity_id=payment.id,
        action="link_created", icon="💳",
        description=f"Final payment link for {format_money(amount)} sent to {budget.client_name}",
        actor=f"user:{user.id}",
        metadata={"budget_id": budget.id, "project_id": project.id, "payment_link_id": link["id"]},
    )
    await db.commit()
    await db.refresh(payment)

    subject, html = build_payment_link_email(
        client_name=budget.client_name,
        project_name=project.name,
        label="Final payment",
        amount=format_money(amount),
        pay_url=link["url"],
        company_name=email_service.company_name,
    )
    email_sent, email_error = await _send(email_service, budget.client_email, subject, html)

    return {
        "success": True,
        "payment": payment.to_dict(),
        "payment_link": link["url"],
        "project_status": project.status,
        "budget_status": budget.status,
        "email_sent": email_sent,
        "email_error": email_error,
    }


# ═══════════════════════════════════════════════════════
#  Delivery scheduling
# ═══════════════════════════════════════════════════════

async def _schedule_email(
    db: AsyncSession,
    email_service: EmailService,
    project: Project,
    schedule: Schedule,
) -> tuple[bool, str | None]:
    email, phone, name = await _recipient(db, project)
    subject, html = build_schedule_email(
        client_name=name,
        project_name=project.name,
        when=f"{schedule.date.strftime('%d/%m/%Y')} {schedule.time}",
        meeting_type=schedule.type,
        meeting_link=schedule.meeting_link,
        phone=phone,
        company_name=email_service.company_name,
    )
    return await _send(email_service, email, subject, html)


@router.post("/{project_id}/schedule", status_code=201)
async def create_schedule(
    project_id: str,
    req: ScheduleRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Public endpoint: the client books the delivery meeting."""
    project = await _get_project(db, project_id)
    if project_status(project.status) not in SCHEDULABLE:
        raise HTTPException(400, "The delivery can only be scheduled once the project is finished")

    schedule = await _get_schedule(db, project.id)
    if schedule is None:
        schedule = Schedule(project_id=project.id, status="scheduled")
        db.add(schedule)
    elif schedule.status == "scheduled":
        raise HTTPException(400, "The delivery is already scheduled")
    elif schedule.status == "pending_reschedule":
        schedule.status = "scheduled"
    else:
        schedule.status = "rescheduled"

    schedule.date = req.date
    schedule.time = req.time
    schedule.type = req.type
    schedule.notes = req.notes
    schedule.meeting_link = settings.meeting_link if req.type == "video" else None

    await db.flush()
    await log_activity(
        db, entity_type="project", entity_id=project.id,
        action="scheduled", icon="📅",
        description=f"Delivery {schedule.status} for {req.date.isoformat()} {req.time} ({req.type})",
        actor=f"client:{project.client_name}",
        metadata={"schedule_id": schedule.id},
    )
    await db.commit()
    await db.refresh(schedule)

    email_sent, email_error = await _schedule_email(db, email_service, project, schedule)
    await notify_managers(
        db,
        title="Delivery scheduled",
        message=f"{project.client_name} booked the delivery of '{project.name}' for {req.date.isoformat()} at {req.time}.",
        type="info",
        category="project",
        link=f"/projects/{project.id}",
        metadata={"project_id": project.id, "schedule_id": schedule.id},
    )
    return {
        "success": True,
        "schedule": schedule.to_dict(),
        "email_sent": email_sent,
        "email_error": email_error,
    }


@router.get("/{project_id}/schedule")
async def get_schedule(project_id: str, db: AsyncSession = Depends(get_db)):
    await _get_project(db, project_id)
    schedule = await _get_schedule(db, project_id)
    if not schedule:
        raise HTTPException(404, "No delivery scheduled for this project")
    return schedule.to_dict()


@router.put("/{project_id}/schedule")
async def reschedule(
    project_id: str,
    req: RescheduleRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    email_service: EmailService = Depends(get_email_service),
):
    """Internal reschedule of an existing delivery meeting."""
    project = await _get_project(db, project_id)
    schedule = await _get_schedule(db, project_id)
    if not schedule:
        raise HTTPException(404, "No delivery scheduled for this project")

    schedule.date = req.date
    schedule.time = req.time
    schedule.type = req.type
    schedule.notes = req.notes if req.notes is not None else schedule.notes
    schedule.meeting_link = settings.meeting_link if req.type == "video" else None
    schedule.status = "rescheduled"
    if req.reason:
        schedule.reschedule_reason = req.reason

    await log_activity(
        db, entity_type="project", entity_id=project.id,
        action="rescheduled", icon="🔄",
        description=f"Delivery moved to {req.date.isoformat()} {req.time}",
        actor=f"user:{user.id}",
        metadata={"reason": req.reason} if req.reason else None,
    )
    await db.commit()
    await db.refresh(schedule)

    email_sent, email_error = await _schedule_email(db, email_service, project, schedule)
    return {
        "success": True,
        "schedule": schedule.to_dict(),
        "email_sent": email_sent,
        "email_error": email_error,
    }


@router.post("/{project_id}/schedule/request-reschedule")
async def request_reschedule(
    project_id: str,
    req: RescheduleAskRequest,
    db: AsyncSession = Depends(get_db),
):
    """Public endpoint: the client asks to move the meeting."""
    project = await _get_project(db, project_id)
    schedule = await _get_schedule(db, project_id)
    if not schedule:
        raise HTTPException(404, "No delivery scheduled for this project")

    schedule.status = "pending_reschedule"
    schedule.reschedule_reason = req.reason
    await log_activity(
        db, entity_type="project", entity_id=project.id,
        action="reschedule_requested", icon="⏳",
        description="Client asked to reschedule the delivery",
        actor=f"client:{project.client_name}",
        metadata={"reason": req.reason} if req.reason else None,
    )
    await db.commit()
    await db.refresh(schedule)

    await notify_managers(
        db,
        title="Reschedule requested",
        message=f"{project.client_name} asked to reschedule the delivery of '{project.name}'."
        + (f" Reason: {req.reason}" if req.reason else ""),
        type="warning",
        category="project",
        link=f"/projects/{project.id}",
        metadata={"project_id": project.id},
    )
    return {"success": True, "schedule": schedule.to_dict()}
