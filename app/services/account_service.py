from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PersistenceError
from app.core.logging import get_logger
from app.models.account import (
    Category,
    GROUP_CATEGORY_NAME,
    GROUP_LENDING_ACCOUNT,
    HELPER_ACCOUNT_NAMES,
    OTHERS_ACCOUNT,
    UserAccount,
)

logger = get_logger("accounts")


@dataclass(frozen=True)
class HelperAccounts:
    others_id: int
    group_lending_id: int


async def get_or_create_helper_account(db: AsyncSession, user_id: int, account_type: str) -> int:
    """
    Return the id of the user's helper account of the given type.

    Commits its own insert, so call it before opening a unit of work.
    A concurrent insert loses on the (user_id, type) unique index and
    re-reads the winner's row.
    """
    q = select(UserAccount.id).where(
        UserAccount.user_id == user_id,
        UserAccount.type == account_type,
    )

    account_id = await db.scalar(q)
    if account_id:
        return account_id

    account = UserAccount(
        user_id=user_id,
        name=HELPER_ACCOUNT_NAMES[account_type],
        type=account_type,
        balance=Decimal("0"),
    )
    db.add(account)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        account_id = await db.scalar(q)
        if account_id is None:
            raise PersistenceError(f"Could not create {account_type} account for user {user_id}")
        return account_id

    logger.info("Created %s account %s for user %s", account_type, account.id, user_id)
    return account.id


async def ensure_helper_accounts(db: AsyncSession, user_id: int) -> HelperAccounts:
    return HelperAccounts(
        others_id=await get_or_create_helper_account(db, user_id, OTHERS_ACCOUNT),
        group_lending_id=await get_or_create_helper_account(db, user_id, GROUP_LENDING_ACCOUNT),
    )


def provision_group_category(db: AsyncSession, group_id: int) -> Category:
    # added to the caller's unit of work; no commit here
    category = Category(name=GROUP_CATEGORY_NAME, type="EXPENSE", group_id=group_id)
    db.add(category)
    return category


async def get_group_category(db: AsyncSession, group_id: int) -> int:
    """
    Id of the group's "Group Expenses" category.

    Groups get one at creation; older groups get it here on first use.
    """
    q = select(Category.id).where(
        Category.group_id == group_id,
        Category.name == GROUP_CATEGORY_NAME,
        Category.type == "EXPENSE",
    )

    category_id = await db.scalar(q)
    if category_id:
        return category_id

    category = provision_group_category(db, group_id)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        category_id = await db.scalar(q)
        if category_id is None:
            raise PersistenceError(f"Could not create category for group {group_id}")
        return category_id

    return category.id


async def get_user_account(db: AsyncSession, account_id: int, user_id: int) -> UserAccount:
    account = await db.get(UserAccount, account_id)

    if not account or account.user_id != user_id:
        raise NotFoundError("Account not found")

    return account


async def adjust_balance(db: AsyncSession, account_id: int, delta: Decimal):
    # single UPDATE ... SET balance = balance + :delta, no read-modify-write
    stmt = (
        update(UserAccount)
        .where(UserAccount.id == account_id)
        .values(balance=UserAccount.balance + delta)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)

    if res.rowcount != 1:
        raise PersistenceError(f"Account {account_id} does not exist")
