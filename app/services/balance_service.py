from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.dependencies import check_group_membership
from app.core.utils import ZERO, qround, simplify_debts, to_decimal
from app.models.group_expense import ExpenseSplit, GroupExpense
from app.models.group_member import GroupMember
from app.models.settlement import Settlement
from app.models.user import User
from app.schemas.balances import (
    DebtSettlementPreview,
    GroupBalanceOut,
    MemberBalance,
    TransferOut,
)


def aggregate_balances(
    members: Sequence[Tuple[int, str]],
    expenses: Iterable,
    settlements: Iterable = (),
    names: Dict[int, str] | None = None,
) -> Dict[int, MemberBalance]:
    """
    Net balance per member from a group's expenses.

    members: (user_id, name) pairs, in display order; every member gets an
    entry even without activity.
    expenses: objects with amount, lenders[(user_id, amount)] and
    splits[(user_id, amount, settled, coverages[(lender_user_id)])].
    settlements: objects with borrower_user_id, lender_user_id, amount and
    allocated_amount.

    Only unsettled splits count. Each unsettled split debits its ower and
    credits the expense's lenders pro rata to what they fronted, so settling
    a split removes both sides at once. A lender share already covered by a
    settlement drops out the same way while the rest of the split stays
    open. The part of a settlement that was not matched against splits is
    carried as lent by the borrower and borrowed by the lender.
    """
    names = dict(names or {})
    lent: Dict[int, Decimal] = {}
    borrowed: Dict[int, Decimal] = {}

    for uid, name in members:
        names[uid] = name
        lent[uid] = ZERO
        borrowed[uid] = ZERO

    def _add(bucket: Dict[int, Decimal], uid: int, amount: Decimal):
        if uid not in lent:
            lent[uid] = ZERO
            borrowed[uid] = ZERO
        bucket[uid] += amount

    for expense in expenses:
        total = to_decimal(expense.amount)
        if total <= 0:
            continue

        for split in expense.splits:
            if split.settled:
                continue

            share = to_decimal(split.amount)
            covered = {c.lender_user_id for c in split.coverages}

            for lender in expense.lenders:
                # a lender share paid off by a settlement leaves both sides
                if lender.user_id in covered:
                    continue
                portion = share * to_decimal(lender.amount) / total
                _add(borrowed, split.user_id, portion)
                _add(lent, lender.user_id, portion)

    for settlement in settlements:
        carry = to_decimal(settlement.amount) - to_decimal(settlement.allocated_amount)
        if carry == 0:
            continue
        _add(lent, settlement.borrower_user_id, carry)
        _add(borrowed, settlement.lender_user_id, carry)

    return {
        uid: MemberBalance(
            user_id=uid,
            user_name=names.get(uid) or "Unknown",
            total_lent=qround(lent[uid]),
            total_borrowed=qround(borrowed[uid]),
            net_balance=qround(lent[uid] - borrowed[uid]),
        )
        for uid in lent
    }


def net_map(balances: Dict[int, MemberBalance]) -> Dict[int, Decimal]:
    return {uid: b.net_balance for uid, b in balances.items()}


def count_open_debts(expenses: Iterable) -> int:
    """Unsettled splits with a share still owed to somebody other than the ower."""
    count = 0
    for expense in expenses:
        lender_ids = {lender.user_id for lender in expense.lenders}
        for split in expense.splits:
            covered = {c.lender_user_id for c in split.coverages}
            if not split.settled and lender_ids - {split.user_id} - covered:
                count += 1
    return count


async def load_group_members(db: AsyncSession, group_id: int) -> List[Tuple[int, str]]:
    q = (
        select(User.id, User.name, User.email)
        .join(GroupMember, GroupMember.user_id == User.id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.id)
    )
    rows = (await db.execute(q)).all()
    return [(row.id, row.name or row.email or "Unknown") for row in rows]


async def load_user_names(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, str]:
    ids = set(user_ids)
    if not ids:
        return {}
    rows = (await db.execute(
        select(User.id, User.name, User.email).where(User.id.in_(ids))
    )).all()
    return {row.id: row.name or row.email or "Unknown User" for row in rows}


async def load_group_expenses(db: AsyncSession, group_id: int) -> List[GroupExpense]:
    q = (
        select(GroupExpense)
        .where(GroupExpense.group_id == group_id)
        .options(
            selectinload(GroupExpense.lenders),
            selectinload(GroupExpense.splits).selectinload(ExpenseSplit.coverages),
        )
        .order_by(GroupExpense.date, GroupExpense.id)
        .execution_options(populate_existing=True)
    )
    return list((await db.scalars(q)).all())


async def load_group_settlements(db: AsyncSession, group_id: int) -> List[Settlement]:
    q = select(Settlement).where(Settlement.group_id == group_id).order_by(Settlement.id)
    return list((await db.scalars(q)).all())


async def _load_balances(db: AsyncSession, group_id: int):
    members = await load_group_members(db, group_id)
    expenses = await load_group_expenses(db, group_id)
    settlements = await load_group_settlements(db, group_id)

    # former members still carry balances; look their names up separately
    member_ids = {uid for uid, _ in members}
    referenced = set()
    for expense in expenses:
        referenced.update(lender.user_id for lender in expense.lenders)
        referenced.update(split.user_id for split in expense.splits)
    for s in settlements:
        referenced.update((s.borrower_user_id, s.lender_user_id))

    names = await load_user_names(db, referenced - member_ids)

    return aggregate_balances(members, expenses, settlements, names=names), expenses


async def get_group_balances(db: AsyncSession, group_id: int) -> Dict[int, MemberBalance]:
    balances, _ = await _load_balances(db, group_id)
    return balances


def _transfers_out(balances: Dict[int, MemberBalance]) -> List[TransferOut]:
    return [
        TransferOut(
            from_user_id=t.debtor_id,
            from_name=balances[t.debtor_id].user_name,
            to_user_id=t.creditor_id,
            to_name=balances[t.creditor_id].user_name,
            amount=t.amount,
        )
        for t in simplify_debts(net_map(balances))
    ]


async def get_group_balance_view(db: AsyncSession, group_id: int, user_id: int) -> GroupBalanceOut:
    await check_group_membership(db, group_id, user_id)

    balances = await get_group_balances(db, group_id)

    return GroupBalanceOut(
        group_id=group_id,
        balances=list(balances.values()),
        settlements=_transfers_out(balances),
    )


async def get_debt_settlement_preview(
    db: AsyncSession,
    group_id: int,
    user_id: int,
) -> DebtSettlementPreview:
    await check_group_membership(db, group_id, user_id)

    balances, expenses = await _load_balances(db, group_id)
    transfers = _transfers_out(balances)

    return DebtSettlementPreview(
        group_id=group_id,
        balances=list(balances.values()),
        settlements=transfers,
        total_transactions=len(transfers),
        original_transactions=count_open_debts(expenses),
    )
