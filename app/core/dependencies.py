from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.db.session import async_session
from app.core.errors import AuthorizationError, NotFoundError
from app.core.security import decode_token, get_bearer_token
from app.models.group import Group
from app.models.group_member import GroupMember, MemberRole
from app.models.user import User

async def get_db():
    async with async_session() as session:
        yield session

async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    token = get_bearer_token(request)
    payload = decode_token(token)
    user_id = payload.get("sub")

    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user = await db.get(User, int(user_id))

    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    return user

async def check_group_membership(db: AsyncSession, group_id: int, user_id: int) -> GroupMember:
    group = await db.get(Group, group_id)

    if not group:
        raise NotFoundError("Group does not exist")

    q_member = select(GroupMember).where(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id
    )

    member = await db.scalar(q_member)

    if not member:
        raise AuthorizationError("You are not a member of this group")

    return member

async def ensure_group_admin(db: AsyncSession, group_id: int, user_id: int) -> GroupMember:
    member = await check_group_membership(db, group_id, user_id)

    if member.role != MemberRole.ADMIN:
        raise AuthorizationError("Only group admins can settle debts")

    return member

async def fetch_group_member_ids(db: AsyncSession, group_id: int) -> list[int]:
    q = (
        select(GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.id)
    )
    return list((await db.scalars(q)).all())
