from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.dependencies import check_group_membership, fetch_group_member_ids
from app.core.errors import PersistenceError, ValidationError
from app.core.logging import get_logger
from app.core.utils import CENTS, ZERO, equal_split, qround
from app.models.group_expense import ExpenseSplit, GroupExpense, GroupLender
from app.schemas.expense import GroupExpenseCreate
from app.services.account_service import get_user_account

logger = get_logger("expenses")

HUNDRED = Decimal("100")


def percentage_split(amount: Decimal, percents: Dict[int, Decimal]) -> Dict[int, Decimal]:
    """
    Turn percentages into cent amounts; rounding drift goes to the first users.

    The total may miss 100 by up to a cent per user (33.33 three times), the
    shares are then scaled to the given total.
    """
    total = sum(percents.values(), ZERO)
    if not percents or abs(total - HUNDRED) > CENTS * len(percents):
        raise ValidationError("Split percentages must add up to 100")

    shares = {uid: qround(amount * pct / total) for uid, pct in percents.items()}
    drift = amount - sum(shares.values(), ZERO)

    step = CENTS if drift > 0 else -CENTS
    for uid in percents:
        if drift == 0:
            break
        shares[uid] += step
        drift -= step

    return shares


def _resolve_splits(data: GroupExpenseCreate, amount: Decimal) -> Dict[int, Decimal]:
    user_ids = [s.user_id for s in data.splits]

    if data.split_type == "EQUAL" and all(s.amount is None for s in data.splits):
        return equal_split(amount, user_ids)

    if any(s.amount is None for s in data.splits):
        raise ValidationError("Every split needs an amount")

    given = {s.user_id: Decimal(s.amount) for s in data.splits}

    if data.split_type == "PERCENTAGE":
        return percentage_split(amount, given)

    return {uid: qround(v) for uid, v in given.items()}


async def create_group_expense(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    data: GroupExpenseCreate,
) -> GroupExpense:
    await check_group_membership(db, group_id, user_id)

    amount = qround(Decimal(data.amount))

    # -----------------------------------
    # 1. Lenders: default to the caller fronting everything
    # -----------------------------------
    if data.lenders:
        lenders = {}
        for lender in data.lenders:
            if lender.user_id in lenders:
                raise ValidationError("Duplicate users found in lenders")
            lenders[lender.user_id] = qround(Decimal(lender.amount))
    else:
        lenders = {user_id: amount}

    if sum(lenders.values(), ZERO) != amount:
        raise ValidationError(
            f"Lender total ({sum(lenders.values(), ZERO)}) must equal expense amount ({amount})"
        )

    # -----------------------------------
    # 2. Splits
    # -----------------------------------
    split_user_ids = [s.user_id for s in data.splits]

    if len(split_user_ids) != len(set(split_user_ids)):
        raise ValidationError("Duplicate users found in splits")

    splits = _resolve_splits(data, amount)

    if sum(splits.values(), ZERO) != amount:
        raise ValidationError(
            f"Split total ({sum(splits.values(), ZERO)}) must equal expense amount ({amount})"
        )

    # -----------------------------------
    # 3. Everyone involved must be in the group
    # -----------------------------------
    member_ids = set(await fetch_group_member_ids(db, group_id))

    if not (set(lenders) | set(splits)) <= member_ids:
        raise ValidationError("One or more users in the expense are not members of the group")

    if data.account_id is not None:
        await get_user_account(db, data.account_id, user_id)

    # -----------------------------------
    # 4. Persist
    # -----------------------------------
    expense = GroupExpense(
        group_id=group_id,
        description=data.description,
        amount=amount,
        date=data.date or datetime.now(timezone.utc),
        split_type=data.split_type,
        account_id=data.account_id,
        created_by=user_id,
    )
    expense.lenders = [GroupLender(user_id=uid, amount=amt) for uid, amt in lenders.items()]
    expense.splits = [ExpenseSplit(user_id=uid, amount=amt, settled=False) for uid, amt in splits.items()]

    db.add(expense)

    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError("Expense could not be saved") from exc

    logger.info("Expense %s (%s) added to group %s by user %s", expense.id, amount, group_id, user_id)

    return await get_group_expense(db, expense.id)


async def get_group_expense(db: AsyncSession, expense_id: int) -> GroupExpense:
    q = (
        select(GroupExpense)
        .where(GroupExpense.id == expense_id)
        .options(selectinload(GroupExpense.lenders), selectinload(GroupExpense.splits))
        .execution_options(populate_existing=True)
    )
    return await db.scalar(q)


async def list_group_expenses(db: AsyncSession, group_id: int, user_id: int) -> List[GroupExpense]:
    await check_group_membership(db, group_id, user_id)

    q = (
        select(GroupExpense)
        .where(GroupExpense.group_id == group_id)
        .options(selectinload(GroupExpense.lenders), selectinload(GroupExpense.splits))
        .order_by(GroupExpense.date.desc(), GroupExpense.id.desc())
        .execution_options(populate_existing=True)
    )

    res = await db.execute(q)
    return list(res.scalars().all())
