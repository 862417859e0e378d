"""
Agency back-office — In-app notifications.

Fire-and-forget: every helper here logs failures and returns quietly so a
notification problem never undoes the caller's committed work.
"""

import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from agency.models.notification import Notification
from agency.models.user import PROJECT_MANAGER, ROLE_ADMIN, ROLE_TEAM_MEMBER, User

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    category: str = "general",
    link: str | None = None,
    metadata: dict | None = None,
) -> Notification | None:
    notes = await notify_users(db, [user_id], title, message, type, category, link, metadata)
    return notes[0] if notes else None


async def notify_users(
    db: AsyncSession,
    user_ids: list[str],
    title: str,
    message: str,
    type: str = "info",
    category: str = "general",
    link: str | None = None,
    metadata: dict | None = None,
) -> list[Notification]:
    """Create one notification per user in its own commit."""
    if not user_ids:
        return []
    notes = [
        Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            category=category,
            link=link,
            extra_data=metadata or {},
        )
        for user_id in dict.fromkeys(user_ids)
    ]
    try:
        db.add_all(notes)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning(f"Failed to create notifications '{title}': {e}")
        return []
    return notes


async def manager_ids(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(User.id).where(
            or_(
                User.role == ROLE_ADMIN,
                (User.role == ROLE_TEAM_MEMBER) & (User.team_role == PROJECT_MANAGER),
            )
        )
    )
    return list(result.scalars().all())


async def notify_managers(
    db: AsyncSession,
    title: str,
    message: str,
    type: str = "info",
    category: str = "general",
    link: str | None = None,
    metadata: dict | None = None,
) -> list[Notification]:
    try:
        ids = await manager_ids(db)
    except Exception as e:
        logger.warning(f"Could not resolve managers for '{title}': {e}")
        return []
    return await notify_users(db, ids, title, message, type, category, link, metadata)
