from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.models.group_member import GroupMember
from app.models.notification import ActivityLog, Notification

logger = get_logger("notifications")


def format_amount(amount: Decimal) -> str:
    return f"{settings.CURRENCY_SYMBOL}{amount:.2f}"


async def create_notification(
    db: AsyncSession,
    user_id: int,
    title: str,
    message: str,
    type: str,
    related_id: Optional[int] = None,
) -> bool:
    """Best effort: a failure is logged and reported as False, never raised."""
    try:
        db.add(Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            related_id=related_id,
        ))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Error creating %s notification for user %s", type, user_id)
        return False

    logger.debug("Notification created: %s for user %s", type, user_id)
    return True


async def log_activity(
    db: AsyncSession,
    action: str,
    description: str,
    user_id: int,
    group_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    try:
        db.add(ActivityLog(
            action=action,
            description=description,
            user_id=user_id,
            group_id=group_id,
            entity_type=entity_type,
            entity_id=entity_id,
            extra=metadata,
        ))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Error logging %s activity for group %s", action, group_id)
        return False

    return True


async def notify_group_members(
    db: AsyncSession,
    group_id: int,
    exclude_user_id: int,
    title: str,
    message: str,
    type: str,
) -> int:
    q = (
        select(GroupMember.user_id)
        .where(GroupMember.group_id == group_id, GroupMember.user_id != exclude_user_id)
        .order_by(GroupMember.id)
    )
    try:
        user_ids: Iterable[int] = (await db.scalars(q)).all()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not load members of group %s for notifications", group_id)
        return 0

    sent = 0
    for uid in user_ids:
        if await create_notification(db, uid, title, message, type, related_id=group_id):
            sent += 1
    return sent
