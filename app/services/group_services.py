from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.core.dependencies import ensure_group_admin
from app.core.errors import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.group import Group
from app.models.group_member import GroupMember, MemberRole
from app.models.user import User
from app.services.account_service import provision_group_category

logger = get_logger("groups")

async def create_group(db: AsyncSession, name: str, creator_id: int, description: str | None = None):
    group = Group(name=name, description=description, created_by=creator_id)
    db.add(group)
    await db.flush()

    member = GroupMember(group_id=group.id, user_id=creator_id, role=MemberRole.ADMIN)
    db.add(member)

    provision_group_category(db, group.id)

    await db.commit()
    await db.refresh(group)

    logger.info("Group %s created by user %s", group.id, creator_id)
    return group

async def add_member(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    added_by: int,
    role: MemberRole = MemberRole.MEMBER,
):
    await ensure_group_admin(db, group_id, added_by)

    if not await db.get(User, user_id):
        raise NotFoundError("User not found")

    member = GroupMember(group_id=group_id, user_id=user_id, role=role)
    db.add(member)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("User is already a member of this group")

    await db.refresh(member)
    return member

async def list_group_for_user(db: AsyncSession, user_id: int):
    q = (
        select(Group)
        .join(GroupMember)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.id)
    )
    result = await db.execute(q)
    return result.scalars().all()
