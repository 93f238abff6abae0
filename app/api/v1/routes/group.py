from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.services.group_services import create_group, add_member, list_group_for_user
from app.schemas.group import GroupCreate, GroupMemberAdd, GroupMemberOut, GroupOut
from app.core.dependencies import get_current_user, get_db

router = APIRouter()

@router.post("/", response_model=GroupOut)
async def create_new_group(
    data: GroupCreate,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await create_group(db, data.name, user.id, data.description)

@router.post("/{group_id}/members", response_model=GroupMemberOut)
async def add_user_to_group(
    group_id: int,
    data: GroupMemberAdd,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await add_member(db, group_id, data.user_id, added_by=user.id, role=data.role)

@router.get("/my-groups", response_model=list[GroupOut])
async def my_groups(db: AsyncSession = Depends(get_db), user = Depends(get_current_user)):
    return await list_group_for_user(db, user.id)
