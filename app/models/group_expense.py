from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import false
from app.db.session import Base


class GroupExpense(Base):
    __tablename__ = "group_expenses"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(DateTime(timezone=True), server_default=func.now())
    split_type = Column(String, nullable=False, default="EQUAL")
    account_id = Column(Integer, ForeignKey("user_accounts.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lenders = relationship(
        "GroupLender",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="GroupLender.id",
    )
    splits = relationship(
        "ExpenseSplit",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseSplit.id",
    )


class GroupLender(Base):
    __tablename__ = "group_lenders"

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey("group_expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    expense = relationship("GroupExpense", back_populates="lenders")


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey("group_expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)

    settled = Column(Boolean, nullable=False, default=False, server_default=false())
    settled_at = Column(DateTime(timezone=True), nullable=True)
    settlement_account_id = Column(Integer, ForeignKey("user_accounts.id", ondelete="SET NULL"), nullable=True)
    # settlement that covered the last open lender share; cleared on reversal
    settlement_id = Column(Integer, ForeignKey("settlements.id", ondelete="SET NULL"), nullable=True, index=True)

    expense = relationship("GroupExpense", back_populates="splits")
    coverages = relationship(
        "SplitCoverage",
        back_populates="split",
        cascade="all, delete-orphan",
        order_by="SplitCoverage.id",
    )


class SplitCoverage(Base):
    """One lender's share of a split, paid off by a settlement.

    A split is settled once every lender other than its ower has a row.
    """
    __tablename__ = "split_coverages"

    id = Column(Integer, primary_key=True)
    split_id = Column(Integer, ForeignKey("expense_splits.id", ondelete="CASCADE"), nullable=False, index=True)
    lender_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    settlement_id = Column(Integer, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True)

    split = relationship("ExpenseSplit", back_populates="coverages")

    __table_args__ = (
        UniqueConstraint("split_id", "lender_user_id", name="uq_split_coverage_lender"),
    )
