"""
Agency back-office — Activity Log API routes.
Provides a full audit trail for budgets, contracts, payments and projects.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import get_current_user
from agency.database import get_db
from agency.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)
activity_router = APIRouter(prefix="/activity", tags=["activity"], dependencies=[Depends(get_current_user)])


# ═══════════════════════════════════════════════════════
#  Helper: log writer
# ═══════════════════════════════════════════════════════

async def log_activity(
    db: AsyncSession,
    entity_type: str,
    entity_id: str,
    action: str,
    description: str = "",
    icon: str = "📋",
    actor: str = "system",
    metadata: dict | None = None,
    commit: bool = False,
) -> None:
    """
    Record an activity log entry on the caller's session.

    With ``commit=False`` the entry rides along with the caller's commit
    (and disappears with its rollback). ``commit=True`` is for entries
    written after the caller's work is already committed; a failure there
    is logged and swallowed.
    """
    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        description=description,
        icon=icon,
        actor=actor,
        extra_data=metadata or {},
    )
    db.add(entry)
    if not commit:
        return
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning(f"Failed to write activity log: {e}")


def _log_to_response(log: ActivityLog) -> dict:
    return {
        "id": log.id,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "action": log.action,
        "description": log.description,
        "icon": log.icon,
        "actor": log.actor,
        "metadata": log.extra_data or {},
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }


# ═══════════════════════════════════════════════════════
#  API Endpoints
# ═══════════════════════════════════════════════════════

@activity_router.get("")
async def list_activities(
    entity_type: str | None = Query(None, description="Filter by entity type"),
    entity_id: str | None = Query(None, description="Filter by entity ID"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """
    List activity log entries, newest first.
    Optional filters: entity_type, entity_id.
    """
    stmt = select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(limit)

    if entity_type:
        stmt = stmt.where(ActivityLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(ActivityLog.entity_id == entity_id)

    result = await db.execute(stmt)
    logs = result.scalars().all()

    return {
        "activities": [_log_to_response(log) for log in logs],
        "total": len(logs),
    }


@activity_router.get("/entity/{entity_type}/{entity_id}")
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Full history for one budget, project, contract or client."""
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.entity_type == entity_type)
        .where(ActivityLog.entity_id == entity_id)
        .order_by(ActivityLog.created_at.asc())
    )
    logs = result.scalars().all()

    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "history": [_log_to_response(log) for log in logs],
        "total": len(logs),
    }
