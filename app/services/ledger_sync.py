"""
Turns one debtor -> creditor transfer into personal ledger state.

Every write here joins the caller's open transaction; the caller commits
after apply_transfer returns and rolls back if it raises, so a transfer is
applied completely or not at all.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.core.utils import TOLERANCE, ZERO, qround, to_decimal
from app.models.group_expense import ExpenseSplit, GroupExpense, GroupLender, SplitCoverage
from app.models.ledger import (
    Borrowing,
    Expense,
    Income,
    Lending,
    SETTLEMENT_PAID,
    SETTLEMENT_RECEIVED,
)
from app.models.settlement import Settlement
from app.services.account_service import HelperAccounts, adjust_balance

logger = get_logger("ledger")


@dataclass
class CoveragePlan:
    # (split_id, creditor's share of that split), oldest first
    shares: List[Tuple[int, Decimal]] = field(default_factory=list)
    covered: Decimal = ZERO
    # every open share owed to the creditor, whether it fits or not
    outstanding: Decimal = ZERO

    @property
    def split_ids(self) -> List[int]:
        return [split_id for split_id, _ in self.shares]


@dataclass
class AppliedTransfer:
    settlement_id: int
    amount: Decimal
    allocated_amount: Decimal
    split_ids: List[int] = field(default_factory=list)
    completed_split_ids: List[int] = field(default_factory=list)


async def find_covered_splits(
    db: AsyncSession,
    group_id: int,
    debtor_id: int,
    creditor_id: int,
    amount: Decimal,
) -> CoveragePlan:
    """
    The creditor's shares of the debtor's open splits that `amount` pays off.

    The creditor's share of a split is split.amount * creditor_lent /
    expense.amount; other lenders of the same expense keep their own shares.
    Shares already covered by an earlier settlement are skipped. Shares are
    taken oldest first and only while the running total stays within
    amount (+1 cent); one that does not fit is skipped, never partially
    covered.
    """
    q = (
        select(ExpenseSplit)
        .join(GroupExpense, GroupExpense.id == ExpenseSplit.expense_id)
        .where(
            GroupExpense.group_id == group_id,
            ExpenseSplit.user_id == debtor_id,
            ExpenseSplit.settled == False,
            GroupExpense.lenders.any(GroupLender.user_id == creditor_id),
            ~ExpenseSplit.coverages.any(SplitCoverage.lender_user_id == creditor_id),
        )
        .options(selectinload(ExpenseSplit.expense).selectinload(GroupExpense.lenders))
        .order_by(GroupExpense.date, GroupExpense.id, ExpenseSplit.id)
        .execution_options(populate_existing=True)
    )
    splits = (await db.scalars(q)).all()

    plan = CoveragePlan()

    for split in splits:
        expense = split.expense
        creditor_lent = sum(
            (to_decimal(lender.amount) for lender in expense.lenders if lender.user_id == creditor_id),
            ZERO,
        )
        share = qround(to_decimal(split.amount) * creditor_lent / to_decimal(expense.amount))
        if share <= 0:
            continue

        plan.outstanding += share

        if plan.covered + share <= amount + TOLERANCE:
            plan.covered += share
            plan.shares.append((split.id, share))

    return plan


async def _completed_splits(db: AsyncSession, split_ids: List[int]) -> List[int]:
    """Splits among split_ids with no lender share left open (the ower's own share never is)."""
    has_coverage = (
        select(SplitCoverage.id)
        .where(
            SplitCoverage.split_id == ExpenseSplit.id,
            SplitCoverage.lender_user_id == GroupLender.user_id,
        )
        .correlate(ExpenseSplit, GroupLender)
    )
    open_lender = (
        select(GroupLender.id)
        .where(
            GroupLender.expense_id == ExpenseSplit.expense_id,
            GroupLender.user_id != ExpenseSplit.user_id,
            ~has_coverage.exists(),
        )
        .correlate(ExpenseSplit)
    )
    q = (
        select(ExpenseSplit.id)
        .where(ExpenseSplit.id.in_(split_ids), ~open_lender.exists())
        .order_by(ExpenseSplit.id)
    )
    return list((await db.scalars(q)).all())


async def apply_transfer(
    db: AsyncSession,
    *,
    group_id: int,
    debtor_id: int,
    creditor_id: int,
    amount: Decimal,
    settled_by: int,
    category_id: int,
    debtor_accounts: HelperAccounts,
    creditor_accounts: HelperAccounts,
    names: Dict[int, str],
    plan: Optional[CoveragePlan] = None,
    debtor_account_id: Optional[int] = None,
    creditor_account_id: Optional[int] = None,
) -> AppliedTransfer:
    """
    Post the four ledger entries, the Settlement, the covered shares and the
    splits they complete.

    plan: shares already chosen by the caller; looked up with
    find_covered_splits when omitted.
    debtor_account_id: account the debtor paid from (default "Others").
    creditor_account_id: account the creditor received on (default "Others").
    """
    amount = qround(to_decimal(amount))
    if plan is None:
        plan = await find_covered_splits(db, group_id, debtor_id, creditor_id, amount)

    paid_from = debtor_account_id or debtor_accounts.others_id
    received_on = creditor_account_id or creditor_accounts.others_id
    debtor_name = names.get(debtor_id, "Unknown User")
    creditor_name = names.get(creditor_id, "Unknown User")
    now = datetime.now(timezone.utc)

    expense = Expense(
        amount=amount,
        description=f"[Group Settlement] Payment to {creditor_name}",
        date=now,
        user_id=debtor_id,
        account_id=paid_from,
        category_id=category_id,
        group_id=group_id,
        group_type=SETTLEMENT_PAID,
    )
    lending = Lending(
        amount=amount,
        description=f"[Group Settlement] Debt reduction to {creditor_name}",
        date=now,
        user_id=debtor_id,
        account_id=debtor_accounts.group_lending_id,
        category_id=category_id,
        group_id=group_id,
        group_type=SETTLEMENT_PAID,
    )
    income = Income(
        amount=amount,
        description=f"[Group Settlement] Payment from {debtor_name}",
        date=now,
        user_id=creditor_id,
        account_id=received_on,
        category_id=category_id,
        group_id=group_id,
        group_type=SETTLEMENT_RECEIVED,
    )
    borrowing = Borrowing(
        amount=amount,
        description=f"[Group Settlement] Credit reduction from {debtor_name}",
        date=now,
        user_id=creditor_id,
        account_id=creditor_accounts.group_lending_id,
        category_id=category_id,
        group_id=group_id,
        group_type=SETTLEMENT_RECEIVED,
    )
    db.add_all([expense, lending, income, borrowing])

    await adjust_balance(db, paid_from, -amount)
    await adjust_balance(db, debtor_accounts.group_lending_id, amount)
    await adjust_balance(db, received_on, amount)
    await adjust_balance(db, creditor_accounts.group_lending_id, -amount)

    await db.flush()

    settlement = Settlement(
        group_id=group_id,
        amount=amount,
        allocated_amount=qround(plan.covered),
        borrower_user_id=debtor_id,
        lender_user_id=creditor_id,
        borrower_account_id=paid_from,
        lender_account_id=received_on,
        settled_by_user_id=settled_by,
        borrower_expense_id=expense.id,
        borrower_lending_id=lending.id,
        lender_income_id=income.id,
        lender_borrowing_id=borrowing.id,
        settled_at=now,
    )
    db.add(settlement)
    await db.flush()

    completed: List[int] = []

    if plan.shares:
        # a share covered concurrently trips uq_split_coverage_lender here
        db.add_all([
            SplitCoverage(
                split_id=split_id,
                lender_user_id=creditor_id,
                amount=share,
                settlement_id=settlement.id,
            )
            for split_id, share in plan.shares
        ])
        await db.flush()

        completed = await _completed_splits(db, plan.split_ids)

    if completed:
        stmt = (
            update(ExpenseSplit)
            .where(ExpenseSplit.id.in_(completed), ExpenseSplit.settled == False)
            .values(
                settled=True,
                settled_at=now,
                settlement_id=settlement.id,
                settlement_account_id=paid_from,
            )
        )
        res = await db.execute(stmt)

        # another request settled some of these first
        if res.rowcount != len(completed):
            raise PersistenceError(
                f"Splits between {debtor_id} and {creditor_id} changed while settling"
            )

    logger.info(
        "Settlement %s: %s -> %s %s in group %s (%s shares, %s splits closed)",
        settlement.id, debtor_id, creditor_id, amount, group_id, len(plan.shares), len(completed),
    )

    return AppliedTransfer(
        settlement_id=settlement.id,
        amount=amount,
        allocated_amount=settlement.allocated_amount,
        split_ids=plan.split_ids,
        completed_split_ids=completed,
    )
