from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.schemas.expense import GroupExpenseCreate, GroupExpenseOut
from app.services.expense_services import create_group_expense, list_group_expenses
from app.core.dependencies import get_current_user, get_db

router = APIRouter()

@router.post("/{group_id}/expenses", response_model=GroupExpenseOut)
async def add_expense(
    group_id: int,
    data: GroupExpenseCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await create_group_expense(db, group_id, current_user.id, data)

@router.get("/{group_id}/expenses", response_model=list[GroupExpenseOut])
async def all_expenses(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await list_group_expenses(db, group_id, current_user.id)
