from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import declared_attr
from app.db.session import Base

SETTLEMENT_PAID = "SETTLEMENT_PAID"
SETTLEMENT_RECEIVED = "SETTLEMENT_RECEIVED"


class LedgerEntryMixin:
    """Columns shared by the personal ledger tables."""

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String, nullable=False)
    date = Column(DateTime(timezone=True), server_default=func.now())
    group_type = Column(String, nullable=True)

    @declared_attr
    def user_id(cls):
        return Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def account_id(cls):
        return Column(Integer, ForeignKey("user_accounts.id"), nullable=False)

    @declared_attr
    def category_id(cls):
        return Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def group_id(cls):
        return Column(Integer, ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)


class Expense(LedgerEntryMixin, Base):
    __tablename__ = "expenses"


class Income(LedgerEntryMixin, Base):
    __tablename__ = "incomes"


class Lending(LedgerEntryMixin, Base):
    __tablename__ = "lendings"


class Borrowing(LedgerEntryMixin, Base):
    __tablename__ = "borrowings"
