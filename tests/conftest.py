import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.account import UserAccount
from app.models.group_expense import ExpenseSplit, GroupExpense, GroupLender
from app.models.user import User
from app.services.group_services import add_member, create_group

BASE_DATE = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(db):
    """alice, bob, carol, dave -> user ids"""
    ids = {}
    for name in ("alice", "bob", "carol", "dave"):
        user = User(name=name.capitalize(), email=f"{name}@example.com")
        db.add(user)
        await db.flush()
        ids[name] = user.id
    await db.commit()
    return ids


@pytest_asyncio.fixture
async def group_id(db, users):
    """A group administered by alice with bob, carol and dave as members."""
    group = await create_group(db, "Trip", users["alice"])
    for name in ("bob", "carol", "dave"):
        await add_member(db, group.id, users[name], added_by=users["alice"])
    return group.id


@pytest.fixture
def add_expense(db):
    counter = {"n": 0}

    async def _add(group_id, created_by, amount, splits, lenders=None, description="Dinner"):
        counter["n"] += 1
        amount = Decimal(str(amount))
        expense = GroupExpense(
            group_id=group_id,
            description=description,
            amount=amount,
            date=BASE_DATE + timedelta(hours=counter["n"]),
            split_type="EXACT",
            created_by=created_by,
        )
        lenders = lenders or {created_by: amount}
        expense.lenders = [GroupLender(user_id=uid, amount=Decimal(str(a))) for uid, a in lenders.items()]
        expense.splits = [
            ExpenseSplit(user_id=uid, amount=Decimal(str(a)), settled=False) for uid, a in splits.items()
        ]
        db.add(expense)
        await db.commit()
        return expense.id

    return _add


async def account_balance(db, user_id, account_type):
    q = select(UserAccount.balance).where(UserAccount.user_id == user_id, UserAccount.type == account_type)
    return await db.scalar(q)


async def split_state(db, expense_id, user_id):
    q = select(ExpenseSplit.settled, ExpenseSplit.settlement_id).where(
        ExpenseSplit.expense_id == expense_id, ExpenseSplit.user_id == user_id
    )
    return (await db.execute(q)).one()
