from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.dependencies import get_current_user, get_db
from app.schemas.balances import DebtSettlementPreview, GroupBalanceOut
from app.schemas.settlements import (
    DebtSettlementRequest,
    ReconciliationOut,
    SettleBalanceRequest,
    SettlementOut,
    SettlementReversalOut,
    SettlementRunOut,
    SettleSplitsOut,
    SettleSplitsRequest,
)
from app.services.balance_service import get_debt_settlement_preview, get_group_balance_view
from app.services.settlement_service import (
    delete_settlement,
    get_settlement_history,
    reconcile_group,
    settle_balance,
    settle_group_debts,
    settle_own_splits,
)

router = APIRouter()


@router.get("/groups/{group_id}/balances", response_model=GroupBalanceOut)
async def group_balances(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await get_group_balance_view(db, group_id, user.id)


@router.get("/groups/{group_id}/debt-settlement", response_model=DebtSettlementPreview)
async def debt_settlement_preview(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await get_debt_settlement_preview(db, group_id, user.id)


@router.post("/groups/{group_id}/debt-settlement", response_model=SettlementRunOut)
async def settle_debts(
    group_id: int,
    data: DebtSettlementRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    transfers = data.transfers if data else None
    return await settle_group_debts(db, group_id, user.id, transfers)


@router.post("/groups/{group_id}/settle-balance", response_model=SettlementRunOut)
async def settle_pair(
    group_id: int,
    data: SettleBalanceRequest,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await settle_balance(db, group_id, user.id, data)


@router.post("/groups/{group_id}/settle", response_model=SettleSplitsOut)
async def settle_splits(
    group_id: int,
    data: SettleSplitsRequest,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await settle_own_splits(db, group_id, user.id, data.split_ids)


@router.get("/groups/{group_id}/settlements", response_model=list[SettlementOut])
async def settlement_history(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await get_settlement_history(db, group_id, user.id)


@router.get("/groups/{group_id}/reconcile", response_model=ReconciliationOut)
async def reconcile(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await reconcile_group(db, group_id, user.id)


@router.delete("/settlements/{settlement_id}", response_model=SettlementReversalOut)
async def undo_settlement(
    settlement_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user),
):
    return await delete_settlement(db, settlement_id, user.id)
