from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import (
    check_group_membership,
    ensure_group_admin,
    fetch_group_member_ids,
)
from app.core.errors import (
    AuthorizationError,
    LedgerError,
    NoDebtFoundError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.utils import Transfer, ZERO, qround, simplify_debts, to_decimal
from app.models.group import Group
from app.models.group_expense import ExpenseSplit, GroupExpense, SplitCoverage
from app.models.ledger import Borrowing, Expense, Income, Lending
from app.models.notification import (
    GROUP_EXPENSE_DELETED,
    GROUP_PAYMENT_RECEIVED,
    SETTLEMENT_ADDED,
    SETTLEMENT_DELETED,
)
from app.models.settlement import Settlement
from app.schemas.settlements import (
    ReconciliationIssue,
    ReconciliationOut,
    SettleBalanceRequest,
    SettlementReversalOut,
    SettlementRunOut,
    SettleSplitsOut,
    TransferIn,
    TransferResult,
)
from app.services.account_service import (
    adjust_balance,
    ensure_helper_accounts,
    get_group_category,
    get_user_account,
)
from app.services.balance_service import get_group_balances, load_user_names, net_map
from app.services.ledger_sync import CoveragePlan, apply_transfer, find_covered_splits
from app.services.notification_service import (
    format_amount,
    log_activity,
    notify_group_members,
)

logger = get_logger("settlements")

# (model, Settlement column, sign of the balance change that undoes the posting)
POSTINGS = (
    (Expense, "borrower_expense_id", Decimal("1")),
    (Lending, "borrower_lending_id", Decimal("-1")),
    (Income, "lender_income_id", Decimal("-1")),
    (Borrowing, "lender_borrowing_id", Decimal("1")),
)


def _error_text(exc: Exception) -> str:
    if isinstance(exc, LedgerError):
        return exc.detail
    return exc.__class__.__name__


def _run_out(group_id: int, results: List[TransferResult]) -> SettlementRunOut:
    settled = [r for r in results if r.status == "settled"]
    return SettlementRunOut(
        group_id=group_id,
        results=results,
        settled_count=len(settled),
        failed_count=sum(1 for r in results if r.status == "failed"),
        total_settled=qround(sum((r.amount for r in settled), ZERO)),
    )


async def _group_name(db: AsyncSession, group_id: int) -> str:
    return await db.scalar(select(Group.name).where(Group.id == group_id)) or "Unknown"


async def _validate_transfers(db: AsyncSession, group_id: int, transfers: List[Transfer]):
    member_ids = set(await fetch_group_member_ids(db, group_id))

    for t in transfers:
        if t.debtor_id == t.creditor_id:
            raise ValidationError("A transfer needs two different members")
        if t.debtor_id not in member_ids or t.creditor_id not in member_ids:
            raise ValidationError("One or more users in transfers are not members of the group")
        if t.amount <= 0:
            raise ValidationError("Transfer amounts must be positive")


async def _emit_settlement_events(
    db: AsyncSession,
    group_id: int,
    actor_id: int,
    names: Dict[int, str],
    group_name: str,
    results: List[TransferResult],
):
    settled = [r for r in results if r.status == "settled"]
    if not settled:
        return

    actor = names.get(actor_id, "Someone")
    total = qround(sum((r.amount for r in settled), ZERO))

    if len(settled) == 1:
        r = settled[0]
        message = (
            f"{actor} recorded a settlement of {format_amount(r.amount)} from "
            f"{names.get(r.from_user_id)} to {names.get(r.to_user_id)} in group \"{group_name}\"."
        )
    else:
        lines = ", ".join(
            f"{names.get(r.from_user_id)} to {names.get(r.to_user_id)} {format_amount(r.amount)}"
            for r in settled
        )
        message = (
            f"{actor} settled {len(settled)} payments totalling {format_amount(total)} "
            f"in group \"{group_name}\": {lines}."
        )

    await notify_group_members(
        db, group_id, actor_id, "Group Balance Settled", message, GROUP_PAYMENT_RECEIVED
    )

    await log_activity(
        db,
        action=SETTLEMENT_ADDED,
        description=f"Settled {format_amount(total)} in {len(settled)} payment(s)",
        user_id=actor_id,
        group_id=group_id,
        entity_type="settlement",
        entity_id=settled[0].settlement_id if len(settled) == 1 else None,
        metadata={
            "amount": str(total),
            "settledBy": actor,
            "transfers": [
                {
                    "settlementId": r.settlement_id,
                    "fromUser": names.get(r.from_user_id),
                    "toUser": names.get(r.to_user_id),
                    "amount": str(r.amount),
                }
                for r in settled
            ],
            "failed": sum(1 for r in results if r.status == "failed"),
        },
    )


async def settle_group_debts(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    transfers: Optional[List[TransferIn]] = None,
) -> SettlementRunOut:
    """
    Apply a batch of transfers for a group (admins only).

    Without explicit transfers the current balances are simplified first.
    Each transfer is its own transaction: a failing one is rolled back and
    reported, the rest of the batch still runs.
    """
    await ensure_group_admin(db, group_id, user_id)

    if transfers is None:
        # may include former members who still carry a balance
        planned = simplify_debts(net_map(await get_group_balances(db, group_id)))
    else:
        planned = [Transfer(t.from_user_id, t.to_user_id, qround(t.amount)) for t in transfers]
        await _validate_transfers(db, group_id, planned)

    if not planned:
        return _run_out(group_id, [])

    party_ids = {t.debtor_id for t in planned} | {t.creditor_id for t in planned} | {user_id}
    names = await load_user_names(db, party_ids)
    group_name = await _group_name(db, group_id)

    try:
        category_id = await get_group_category(db, group_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError("Could not resolve the group category") from exc

    results: List[TransferResult] = []

    for t in planned:
        try:
            debtor_accounts = await ensure_helper_accounts(db, t.debtor_id)
            creditor_accounts = await ensure_helper_accounts(db, t.creditor_id)

            applied = await apply_transfer(
                db,
                group_id=group_id,
                debtor_id=t.debtor_id,
                creditor_id=t.creditor_id,
                amount=t.amount,
                settled_by=user_id,
                category_id=category_id,
                debtor_accounts=debtor_accounts,
                creditor_accounts=creditor_accounts,
                names=names,
            )
            await db.commit()
        except (SQLAlchemyError, PersistenceError) as exc:
            await db.rollback()
            logger.warning(
                "Transfer %s -> %s (%s) in group %s failed: %s",
                t.debtor_id, t.creditor_id, t.amount, group_id, exc,
            )
            results.append(TransferResult(
                from_user_id=t.debtor_id,
                to_user_id=t.creditor_id,
                amount=t.amount,
                status="failed",
                error=_error_text(exc),
            ))
            continue

        results.append(TransferResult(
            from_user_id=t.debtor_id,
            to_user_id=t.creditor_id,
            amount=applied.amount,
            status="settled",
            settlement_id=applied.settlement_id,
            settled_splits=len(applied.completed_split_ids),
        ))

    await _emit_settlement_events(db, group_id, user_id, names, group_name, results)

    return _run_out(group_id, results)


async def _plan_pair_coverage(db, group_id, debtor_id, creditor_id, amount) -> CoveragePlan:
    plan = await find_covered_splits(db, group_id, debtor_id, creditor_id, amount)
    if plan.outstanding <= 0:
        raise NoDebtFoundError("No debts found between these users")
    if not plan.shares:
        raise ValidationError(
            f"Amount {amount} does not cover any open debt between these users "
            f"({plan.outstanding} outstanding)"
        )
    return plan


async def settle_balance(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    data: SettleBalanceRequest,
) -> SettlementRunOut:
    """
    Settle what one member owes another, recorded by either side.

    The debtor records a payment (their settlement_account_id is the account
    paid from); the creditor records a receipt (their settlement_account_id
    is the account received on). The settled amount is the sum of the
    creditor's shares of the debtor's splits that fit in the requested
    amount. "no_debts" only when no such share is open at all.
    """
    await check_group_membership(db, group_id, user_id)

    debtor_id, creditor_id = data.from_user_id, data.to_user_id

    if debtor_id == creditor_id:
        raise ValidationError("From user and to user must differ")

    if user_id not in (debtor_id, creditor_id):
        raise AuthorizationError("Access denied")

    member_ids = set(await fetch_group_member_ids(db, group_id))
    if debtor_id not in member_ids or creditor_id not in member_ids:
        raise ValidationError("Both users must be members of the group")

    if data.settlement_account_id is not None:
        await get_user_account(db, data.settlement_account_id, user_id)

    names = await load_user_names(db, {debtor_id, creditor_id, user_id})
    group_name = await _group_name(db, group_id)

    try:
        plan = await _plan_pair_coverage(db, group_id, debtor_id, creditor_id, qround(data.amount))
    except NoDebtFoundError as exc:
        logger.info("No debts between %s and %s in group %s", debtor_id, creditor_id, group_id)
        return _run_out(group_id, [TransferResult(
            from_user_id=debtor_id,
            to_user_id=creditor_id,
            amount=ZERO,
            status="no_debts",
            error=exc.detail,
        )])

    try:
        category_id = await get_group_category(db, group_id)
        debtor_accounts = await ensure_helper_accounts(db, debtor_id)
        creditor_accounts = await ensure_helper_accounts(db, creditor_id)

        applied = await apply_transfer(
            db,
            group_id=group_id,
            debtor_id=debtor_id,
            creditor_id=creditor_id,
            amount=plan.covered,
            settled_by=user_id,
            category_id=category_id,
            debtor_accounts=debtor_accounts,
            creditor_accounts=creditor_accounts,
            names=names,
            plan=plan,
            debtor_account_id=data.settlement_account_id if user_id == debtor_id else None,
            creditor_account_id=data.settlement_account_id if user_id == creditor_id else None,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Settling %s -> %s in group %s failed", debtor_id, creditor_id, group_id)
        raise PersistenceError("Settlement could not be recorded") from exc
    except PersistenceError:
        await db.rollback()
        raise

    results = [TransferResult(
        from_user_id=debtor_id,
        to_user_id=creditor_id,
        amount=applied.amount,
        status="settled",
        settlement_id=applied.settlement_id,
        settled_splits=len(applied.completed_split_ids),
    )]

    await _emit_settlement_events(db, group_id, user_id, names, group_name, results)

    return _run_out(group_id, results)


async def settle_own_splits(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    split_ids: List[int],
) -> SettleSplitsOut:
    """Mark the caller's own splits as paid outside the app; no postings."""
    await check_group_membership(db, group_id, user_id)

    if not split_ids:
        raise ValidationError("Split IDs are required")

    # only the caller's own open splits in this group; anything else is ignored
    owned_q = (
        select(ExpenseSplit.id)
        .join(GroupExpense, GroupExpense.id == ExpenseSplit.expense_id)
        .where(
            ExpenseSplit.id.in_(split_ids),
            ExpenseSplit.user_id == user_id,
            ExpenseSplit.settled == False,
            GroupExpense.group_id == group_id,
        )
    )
    owned = list((await db.scalars(owned_q)).all())

    if not owned:
        return SettleSplitsOut(settled_splits=0)

    stmt = (
        update(ExpenseSplit)
        .where(ExpenseSplit.id.in_(owned), ExpenseSplit.settled == False)
        .values(settled=True, settled_at=datetime.now(timezone.utc))
    )

    try:
        res = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError("Splits could not be settled") from exc

    logger.info("User %s settled %s own splits in group %s", user_id, res.rowcount, group_id)
    return SettleSplitsOut(settled_splits=res.rowcount)


async def get_settlement_history(db: AsyncSession, group_id: int, user_id: int) -> List[Settlement]:
    await check_group_membership(db, group_id, user_id)

    q = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.settled_at.desc(), Settlement.id.desc())
    )

    result = await db.execute(q)
    return list(result.scalars().all())


async def delete_settlement(db: AsyncSession, settlement_id: int, user_id: int) -> SettlementReversalOut:
    """
    Reverse a settlement: drop the shares it covered, reopen the splits
    that were closed with them, undo and delete its four postings, delete
    the record. One transaction.
    """
    settlement = await db.get(Settlement, settlement_id)

    if not settlement:
        raise NotFoundError("Settlement not found")

    # Only the two parties can undo it
    if user_id not in (settlement.borrower_user_id, settlement.lender_user_id):
        raise AuthorizationError("Access denied")

    group_id = settlement.group_id
    amount = settlement.amount
    borrower_id = settlement.borrower_user_id
    lender_id = settlement.lender_user_id
    posting_ids = [(model, getattr(settlement, column), sign) for model, column, sign in POSTINGS]

    names = await load_user_names(db, {borrower_id, lender_id, user_id})
    group_name = await _group_name(db, group_id)

    covered_split_ids = list((await db.scalars(
        select(SplitCoverage.split_id).where(SplitCoverage.settlement_id == settlement_id)
    )).all())

    try:
        await db.execute(delete(SplitCoverage).where(SplitCoverage.settlement_id == settlement_id))

        # a split closed by a later settlement loses this share too; splits
        # closed with settle-own-splits carry no settlement and stay closed
        res = await db.execute(
            update(ExpenseSplit)
            .where(
                (ExpenseSplit.settlement_id == settlement_id) | ExpenseSplit.id.in_(covered_split_ids),
                ExpenseSplit.settlement_id.isnot(None),
            )
            .values(settled=False, settled_at=None, settlement_id=None, settlement_account_id=None)
            .execution_options(synchronize_session=False)
        )
        unsettled = res.rowcount

        await db.delete(settlement)
        await db.flush()

        reversed_postings = 0
        for model, posting_id, sign in posting_ids:
            if posting_id is None:
                continue
            posting = await db.get(model, posting_id)
            if posting is None:
                logger.warning("Settlement %s: %s %s already gone", settlement_id, model.__tablename__, posting_id)
                continue
            await adjust_balance(db, posting.account_id, sign * posting.amount)
            await db.delete(posting)
            reversed_postings += 1

        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Reversing settlement %s failed", settlement_id)
        raise PersistenceError("Settlement could not be deleted") from exc
    except PersistenceError:
        await db.rollback()
        raise

    logger.info("Settlement %s reversed by user %s (%s splits reopened)", settlement_id, user_id, unsettled)

    actor = names.get(user_id, "Someone")
    borrower = names.get(borrower_id)
    lender = names.get(lender_id)

    await notify_group_members(
        db,
        group_id,
        user_id,
        "Settlement Deleted",
        f"{actor} deleted a settlement of {format_amount(amount)} from {borrower} to {lender} "
        f"in group \"{group_name}\".",
        GROUP_EXPENSE_DELETED,
    )
    await log_activity(
        db,
        action=SETTLEMENT_DELETED,
        description=f"Deleted settlement of {format_amount(amount)} from {borrower} to {lender}",
        user_id=user_id,
        group_id=group_id,
        entity_type="settlement",
        entity_id=settlement_id,
        metadata={
            "amount": str(amount),
            "fromUser": borrower,
            "toUser": lender,
            "deletedBy": actor,
            "unsettledSplits": unsettled,
        },
    )

    return SettlementReversalOut(
        settlement_id=settlement_id,
        unsettled_splits=unsettled,
        reversed_postings=reversed_postings,
    )


async def reconcile_group(db: AsyncSession, group_id: int, user_id: int) -> ReconciliationOut:
    """
    Check that settled splits and settlement postings still line up.
    """
    await ensure_group_admin(db, group_id, user_id)

    issues: List[ReconciliationIssue] = []

    orphan_q = (
        select(ExpenseSplit.id, ExpenseSplit.settlement_id, ExpenseSplit.settled)
        .join(GroupExpense, GroupExpense.id == ExpenseSplit.expense_id)
        .outerjoin(Settlement, Settlement.id == ExpenseSplit.settlement_id)
        .where(
            GroupExpense.group_id == group_id,
            ExpenseSplit.settlement_id.isnot(None),
            (Settlement.id.is_(None)) | (ExpenseSplit.settled == False),
        )
        .order_by(ExpenseSplit.id)
    )
    for row in (await db.execute(orphan_q)).all():
        detail = (
            f"points at missing settlement {row.settlement_id}"
            if row.settled
            else f"is open but linked to settlement {row.settlement_id}"
        )
        issues.append(ReconciliationIssue(kind="orphan_split", entity_id=row.id, detail=f"Split {detail}"))

    settlements = (await db.scalars(
        select(Settlement).where(Settlement.group_id == group_id).order_by(Settlement.id)
    )).all()

    coverage_q = (
        select(SplitCoverage.settlement_id, func.sum(SplitCoverage.amount))
        .join(Settlement, Settlement.id == SplitCoverage.settlement_id)
        .where(Settlement.group_id == group_id)
        .group_by(SplitCoverage.settlement_id)
    )
    covered_by = {sid: qround(to_decimal(total)) for sid, total in (await db.execute(coverage_q)).all()}

    for s in settlements:
        covered = covered_by.get(s.id, ZERO)
        if covered != qround(s.allocated_amount):
            issues.append(ReconciliationIssue(
                kind="allocation_mismatch",
                entity_id=s.id,
                detail=f"Settlement allocated {s.allocated_amount} but covers {covered}",
            ))

        for model, column, _ in POSTINGS:
            posting_id = getattr(s, column)
            if posting_id is None or await db.get(model, posting_id) is None:
                issues.append(ReconciliationIssue(
                    kind="missing_posting",
                    entity_id=s.id,
                    detail=f"Settlement has no {model.__tablename__} posting",
                ))

    return ReconciliationOut(group_id=group_id, consistent=not issues, issues=issues)
