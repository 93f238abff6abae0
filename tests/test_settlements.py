"""Settlement application against an in-memory database."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from app.core.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models.account import GROUP_LENDING_ACCOUNT, OTHERS_ACCOUNT, UserAccount
from app.models.group_expense import ExpenseSplit, SplitCoverage
from app.models.ledger import Borrowing, Expense, Income, Lending
from app.models.notification import ActivityLog, Notification, SETTLEMENT_ADDED, SETTLEMENT_DELETED
from app.models.settlement import Settlement
from app.schemas.settlements import SettleBalanceRequest, TransferIn
from app.services import settlement_service
from app.services.balance_service import get_debt_settlement_preview, get_group_balances
from app.services.settlement_service import (
    delete_settlement,
    get_settlement_history,
    reconcile_group,
    settle_balance,
    settle_group_debts,
    settle_own_splits,
)
from conftest import account_balance, split_state

D = Decimal


async def _count(db, column):
    return await db.scalar(select(func.count(column)))


async def _nets(db, group_id):
    return {uid: b.net_balance for uid, b in (await get_group_balances(db, group_id)).items()}


async def test_batch_settles_every_debt(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {bob: "60", carol: "40"})

    run = await settle_group_debts(db, group_id, alice)

    assert run.settled_count == 2
    assert run.failed_count == 0
    assert run.total_settled == D("100.00")
    assert [(r.from_user_id, r.to_user_id, r.amount) for r in run.results] == [
        (bob, alice, D("60.00")),
        (carol, alice, D("40.00")),
    ]

    assert all(v == 0 for v in (await _nets(db, group_id)).values())

    settled, settlement_id = await split_state(db, expense_id, bob)
    assert settled is True
    assert settlement_id == run.results[0].settlement_id

    assert await account_balance(db, bob, OTHERS_ACCOUNT) == D("-60.00")
    assert await account_balance(db, bob, GROUP_LENDING_ACCOUNT) == D("60.00")
    assert await account_balance(db, alice, OTHERS_ACCOUNT) == D("100.00")
    assert await account_balance(db, alice, GROUP_LENDING_ACCOUNT) == D("-100.00")

    for model in (Expense, Income, Lending, Borrowing):
        assert await _count(db, model.id) == 2


async def test_batch_writes_one_notification_per_member_and_one_log(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await add_expense(group_id, alice, "100", {bob: "60", carol: "40"})

    await settle_group_debts(db, group_id, alice)

    recipients = (await db.scalars(select(Notification.user_id).order_by(Notification.user_id))).all()
    assert sorted(recipients) == sorted([bob, carol, users["dave"]])

    message = await db.scalar(select(Notification.message).limit(1))
    assert "$100.00" in message
    assert '"Trip"' in message

    logs = (await db.execute(select(ActivityLog.action, ActivityLog.extra))).all()
    assert len(logs) == 1
    assert logs[0].action == SETTLEMENT_ADDED
    assert logs[0].extra["amount"] == "100.00"
    assert len(logs[0].extra["transfers"]) == 2


async def test_second_run_finds_nothing_to_settle(db, users, group_id, add_expense) -> None:
    alice = users["alice"]
    await add_expense(group_id, alice, "90", {alice: "30", users["bob"]: "30", users["carol"]: "30"})

    await settle_group_debts(db, group_id, alice)
    rerun = await settle_group_debts(db, group_id, alice)

    assert rerun.results == []
    assert await _count(db, Settlement.id) == 2


async def test_two_creditors_two_debtors(db, users, group_id, add_expense) -> None:
    alice, bob, carol, dave = users["alice"], users["bob"], users["carol"], users["dave"]
    await add_expense(group_id, alice, "50", {carol: "40", dave: "10"})
    await add_expense(group_id, bob, "30", {dave: "30"})

    run = await settle_group_debts(db, group_id, alice)

    assert [(r.from_user_id, r.to_user_id, r.amount) for r in run.results] == [
        (carol, alice, D("40.00")),
        (dave, alice, D("10.00")),
        (dave, bob, D("30.00")),
    ]
    assert all(r.settled_splits == 1 for r in run.results)
    assert all(v == 0 for v in (await _nets(db, group_id)).values())


async def test_uncovered_part_is_carried_and_balances_conserved(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await add_expense(group_id, alice, "100", {bob: "50", carol: "50"})
    await add_expense(group_id, carol, "50", {bob: "50"})

    before = await _nets(db, group_id)
    assert before[alice] == D("100.00")
    assert before[bob] == D("-100.00")
    assert before[carol] == D("0.00")

    run = await settle_group_debts(db, group_id, alice)

    assert len(run.results) == 1
    assert run.results[0].amount == D("100.00")
    assert run.results[0].settled_splits == 1

    settlement = (await db.execute(select(Settlement.amount, Settlement.allocated_amount))).one()
    assert settlement.amount == D("100.00")
    assert settlement.allocated_amount == D("50.00")

    assert all(v == 0 for v in (await _nets(db, group_id)).values())
    assert (await settle_group_debts(db, group_id, alice)).results == []


async def test_only_admins_run_the_batch(db, users, group_id, add_expense) -> None:
    await add_expense(group_id, users["alice"], "20", {users["bob"]: "20"})

    with pytest.raises(AuthorizationError):
        await settle_group_debts(db, group_id, users["bob"])

    assert await _count(db, Settlement.id) == 0


async def test_explicit_transfers_are_validated_before_writing(db, users, group_id) -> None:
    alice, bob = users["alice"], users["bob"]

    with pytest.raises(ValidationError):
        await settle_group_debts(
            db, group_id, alice, [TransferIn(from_user_id=bob, to_user_id=bob, amount=D("5"))]
        )

    with pytest.raises(ValidationError):
        await settle_group_debts(
            db,
            group_id,
            alice,
            [
                TransferIn(from_user_id=bob, to_user_id=alice, amount=D("5")),
                TransferIn(from_user_id=9999, to_user_id=alice, amount=D("5")),
            ],
        )

    assert await _count(db, Settlement.id) == 0
    assert await _count(db, UserAccount.id) == 0


async def test_failing_transfer_is_rolled_back_and_batch_continues(
    db, users, group_id, add_expense, monkeypatch
) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {bob: "60", carol: "40"})

    real_apply = settlement_service.apply_transfer

    async def flaky_apply(db, **kwargs):
        applied = await real_apply(db, **kwargs)
        if kwargs["debtor_id"] == carol:
            raise PersistenceError("disk full")
        return applied

    monkeypatch.setattr(settlement_service, "apply_transfer", flaky_apply)

    run = await settle_group_debts(db, group_id, alice)

    assert [r.status for r in run.results] == ["settled", "failed"]
    assert run.results[1].error == "disk full"
    assert run.settled_count == 1
    assert run.failed_count == 1

    assert await _count(db, Settlement.id) == 1
    assert await _count(db, Expense.id) == 1
    assert (await split_state(db, expense_id, carol)).settled is False
    assert await account_balance(db, carol, OTHERS_ACCOUNT) == D("0.00")
    assert await account_balance(db, alice, OTHERS_ACCOUNT) == D("60.00")

    nets = await _nets(db, group_id)
    assert nets[carol] == D("-40.00")
    assert nets[alice] == D("40.00")


async def test_pair_with_no_debts_returns_no_debts_result(db, users, group_id) -> None:
    alice, bob = users["alice"], users["bob"]

    run = await settle_balance(
        db, group_id, bob, SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("10"))
    )

    assert [r.status for r in run.results] == ["no_debts"]
    assert run.settled_count == 0
    assert await _count(db, Settlement.id) == 0
    assert await _count(db, Expense.id) == 0


async def test_pair_settlement_posts_only_covered_splits(db, users, group_id, add_expense) -> None:
    alice, bob = users["alice"], users["bob"]
    first = await add_expense(group_id, alice, "20", {bob: "20"})
    second = await add_expense(group_id, alice, "30", {bob: "30"})

    run = await settle_balance(
        db, group_id, bob, SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("25"))
    )

    assert run.results[0].status == "settled"
    assert run.results[0].amount == D("20.00")
    assert run.results[0].settled_splits == 1
    assert (await split_state(db, first, bob)).settled is True
    assert (await split_state(db, second, bob)).settled is False
    assert (await _nets(db, group_id))[bob] == D("-30.00")


async def test_pair_settlement_covers_one_lender_share_of_a_shared_expense(
    db, users, group_id, add_expense
) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {carol: "100"}, lenders={alice: "50", bob: "50"})

    run = await settle_balance(
        db, group_id, carol, SettleBalanceRequest(from_user_id=carol, to_user_id=alice, amount=D("50"))
    )

    assert run.results[0].status == "settled"
    assert run.results[0].amount == D("50.00")
    assert run.results[0].settled_splits == 0
    assert (await split_state(db, expense_id, carol)).settled is False

    nets = await _nets(db, group_id)
    assert nets[alice] == D("0.00")
    assert nets[bob] == D("50.00")
    assert nets[carol] == D("-50.00")

    again = await settle_balance(
        db, group_id, carol, SettleBalanceRequest(from_user_id=carol, to_user_id=alice, amount=D("50"))
    )
    assert [r.status for r in again.results] == ["no_debts"]

    last = await settle_balance(
        db, group_id, bob, SettleBalanceRequest(from_user_id=carol, to_user_id=bob, amount=D("50"))
    )

    assert last.results[0].amount == D("50.00")
    assert last.results[0].settled_splits == 1
    assert (await split_state(db, expense_id, carol)) == (True, last.results[0].settlement_id)
    assert all(v == 0 for v in (await _nets(db, group_id)).values())


async def test_pair_amount_below_every_open_share_is_rejected(db, users, group_id, add_expense) -> None:
    alice, bob = users["alice"], users["bob"]
    await add_expense(group_id, alice, "100", {bob: "100"})

    with pytest.raises(ValidationError):
        await settle_balance(
            db, group_id, bob, SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("30"))
        )

    assert await _count(db, Settlement.id) == 0
    assert await _count(db, Expense.id) == 0


async def test_batch_closes_split_once_every_lender_is_paid(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {carol: "100"}, lenders={alice: "50", bob: "50"})

    run = await settle_group_debts(db, group_id, alice)

    assert [(r.from_user_id, r.to_user_id, r.amount, r.settled_splits) for r in run.results] == [
        (carol, alice, D("50.00"), 0),
        (carol, bob, D("50.00"), 1),
    ]
    assert (await split_state(db, expense_id, carol)) == (True, run.results[1].settlement_id)
    assert all(v == 0 for v in (await _nets(db, group_id)).values())

    allocated = (await db.scalars(select(Settlement.allocated_amount).order_by(Settlement.id))).all()
    assert allocated == [D("50.00"), D("50.00")]

    preview = await get_debt_settlement_preview(db, group_id, alice)
    assert preview.original_transactions == 0
    assert preview.settlements == []
    assert (await settle_group_debts(db, group_id, alice)).results == []


async def test_reversing_one_lender_share_reopens_the_split(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {carol: "100"}, lenders={alice: "50", bob: "50"})
    run = await settle_group_debts(db, group_id, alice)

    out = await delete_settlement(db, run.results[0].settlement_id, carol)

    assert out.unsettled_splits == 1
    assert (await split_state(db, expense_id, carol)) == (False, None)
    assert await _count(db, SplitCoverage.id) == 1

    nets = await _nets(db, group_id)
    assert nets[alice] == D("50.00")
    assert nets[bob] == D("0.00")
    assert nets[carol] == D("-50.00")

    redo = await settle_balance(
        db, group_id, carol, SettleBalanceRequest(from_user_id=carol, to_user_id=alice, amount=D("50"))
    )
    assert redo.results[0].settled_splits == 1
    assert (await split_state(db, expense_id, carol)).settled is True
    assert (await reconcile_group(db, group_id, alice)).consistent is True


async def test_creditor_records_receipt_on_own_account(db, users, group_id, add_expense) -> None:
    alice, bob = users["alice"], users["bob"]
    await add_expense(group_id, alice, "60", {bob: "60"})

    bank = UserAccount(user_id=alice, name="Checking", type="BANK", balance=D("500"))
    db.add(bank)
    await db.commit()

    run = await settle_balance(
        db,
        group_id,
        alice,
        SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("60"), settlement_account_id=bank.id),
    )

    assert run.settled_count == 1
    assert await db.scalar(select(UserAccount.balance).where(UserAccount.id == bank.id)) == D("560.00")
    assert await account_balance(db, alice, OTHERS_ACCOUNT) == D("0.00")
    assert await account_balance(db, bob, OTHERS_ACCOUNT) == D("-60.00")

    row = (await db.execute(select(Settlement.lender_account_id, Settlement.settled_by_user_id))).one()
    assert row.lender_account_id == bank.id
    assert row.settled_by_user_id == alice


async def test_pair_settlement_access_rules(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await add_expense(group_id, alice, "60", {bob: "60"})

    with pytest.raises(AuthorizationError):
        await settle_balance(
            db, group_id, carol, SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("60"))
        )

    foreign = UserAccount(user_id=carol, name="Wallet", type="CASH", balance=D("0"))
    db.add(foreign)
    await db.commit()

    with pytest.raises(NotFoundError):
        await settle_balance(
            db,
            group_id,
            bob,
            SettleBalanceRequest(from_user_id=bob, to_user_id=alice, amount=D("60"), settlement_account_id=foreign.id),
        )

    with pytest.raises(ValidationError):
        await settle_balance(
            db, group_id, bob, SettleBalanceRequest(from_user_id=bob, to_user_id=bob, amount=D("60"))
        )


async def test_member_settles_own_splits_without_postings(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "90", {alice: "30", bob: "30", carol: "30"})

    split_ids = dict((await db.execute(
        select(ExpenseSplit.user_id, ExpenseSplit.id).where(ExpenseSplit.expense_id == expense_id)
    )).all())

    result = await settle_own_splits(db, group_id, bob, [split_ids[bob], split_ids[carol]])

    assert result.settled_splits == 1
    assert (await split_state(db, expense_id, bob)).settled is True
    assert (await split_state(db, expense_id, carol)).settled is False
    assert await _count(db, Expense.id) == 0

    nets = await _nets(db, group_id)
    assert nets[bob] == D("0.00")
    assert nets[alice] == D("30.00")


async def test_deleting_a_settlement_restores_balances(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    expense_id = await add_expense(group_id, alice, "100", {bob: "60", carol: "40"})
    before = await _nets(db, group_id)

    run = await settle_group_debts(db, group_id, alice)
    bob_settlement = run.results[0].settlement_id

    out = await delete_settlement(db, bob_settlement, bob)

    assert out.unsettled_splits == 1
    assert out.reversed_postings == 4
    assert (await split_state(db, expense_id, bob)) == (False, None)
    assert await account_balance(db, bob, OTHERS_ACCOUNT) == D("0.00")
    assert await account_balance(db, bob, GROUP_LENDING_ACCOUNT) == D("0.00")
    assert await account_balance(db, alice, OTHERS_ACCOUNT) == D("40.00")
    assert await _count(db, Settlement.id) == 1
    assert await _count(db, Income.id) == 1

    nets = await _nets(db, group_id)
    assert nets[bob] == before[bob]
    assert nets[alice] == D("60.00")

    actions = (await db.scalars(select(ActivityLog.action).order_by(ActivityLog.id))).all()
    assert actions[-1] == SETTLEMENT_DELETED


async def test_only_parties_can_delete_a_settlement(db, users, group_id, add_expense) -> None:
    alice, bob = users["alice"], users["bob"]
    await add_expense(group_id, alice, "60", {bob: "60"})
    run = await settle_group_debts(db, group_id, alice)

    with pytest.raises(AuthorizationError):
        await delete_settlement(db, run.results[0].settlement_id, users["carol"])

    with pytest.raises(NotFoundError):
        await delete_settlement(db, 9999, bob)


async def test_history_is_newest_first(db, users, group_id, add_expense) -> None:
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await add_expense(group_id, alice, "100", {bob: "60", carol: "40"})
    run = await settle_group_debts(db, group_id, alice)

    history = await get_settlement_history(db, group_id, carol)

    assert [s.id for s in history] == [r.settlement_id for r in reversed(run.results)]


async def test_reconcile_reports_drift(db, users, group_id, add_expense) -> None:
    alice, bob = users["alice"], users["bob"]
    expense_id = await add_expense(group_id, alice, "60", {bob: "60"})
    run = await settle_group_debts(db, group_id, alice)
    settlement_id = run.results[0].settlement_id

    clean = await reconcile_group(db, group_id, alice)
    assert clean.consistent is True
    assert clean.issues == []

    await db.execute(
        update(Settlement).where(Settlement.id == settlement_id).values(borrower_expense_id=None)
    )
    await db.execute(
        update(ExpenseSplit).where(ExpenseSplit.expense_id == expense_id).values(settled=False)
    )
    await db.commit()

    report = await reconcile_group(db, group_id, alice)

    assert report.consistent is False
    assert sorted(i.kind for i in report.issues) == ["missing_posting", "orphan_split"]

    with pytest.raises(AuthorizationError):
        await reconcile_group(db, group_id, bob)


async def test_reconcile_flags_allocation_that_disagrees_with_covered_shares(
    db, users, group_id, add_expense
) -> None:
    alice, bob = users["alice"], users["bob"]
    await add_expense(group_id, alice, "60", {bob: "60"})
    run = await settle_group_debts(db, group_id, alice)

    await db.execute(
        update(Settlement).where(Settlement.id == run.results[0].settlement_id).values(allocated_amount=D("10"))
    )
    await db.commit()

    report = await reconcile_group(db, group_id, alice)

    assert [(i.kind, i.entity_id) for i in report.issues] == [
        ("allocation_mismatch", run.results[0].settlement_id)
    ]
