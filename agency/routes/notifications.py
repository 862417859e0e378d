"""
Agency back-office — Notification API routes (polled by the dashboard).
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import get_current_user
from agency.database import get_db
from agency.models.notification import Notification
from agency.models.user import User
from agency.schemas import NotificationUpdateRequest

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False),
    since: datetime | None = Query(None, description="Only notifications created after this instant"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    if since:
        stmt = stmt.where(Notification.created_at > since)
    result = await db.execute(stmt)
    notes = result.scalars().all()

    unread = await db.execute(
        select(func.count(Notification.id))
        .where(Notification.user_id == user.id)
        .where(Notification.read.is_(False))
    )
    return {
        "notifications": [n.to_dict() for n in notes],
        "total": len(notes),
        "unread": unread.scalar() or 0,
    }


@router.patch("/{notification_id}")
async def update_notification(
    notification_id: str,
    req: NotificationUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    note = await db.get(Notification, notification_id)
    if not note or note.user_id != user.id:
        raise HTTPException(404, "Notification not found")
    note.read = req.read
    await db.commit()
    await db.refresh(note)
    return note.to_dict()


@router.post("/read-all")
async def mark_all_read(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id)
        .where(Notification.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return {"success": True, "updated": result.rowcount}
