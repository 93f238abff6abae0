from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from app.db.session import Base

class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    # part of amount matched against the borrower's splits; the rest is carried in balances
    allocated_amount = Column(Numeric(12, 2), nullable=False, default=0)

    borrower_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lender_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    borrower_account_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True)
    lender_account_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True)
    settled_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    borrower_expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="SET NULL"), nullable=True)
    borrower_lending_id = Column(Integer, ForeignKey("lendings.id", ondelete="SET NULL"), nullable=True)
    lender_income_id = Column(Integer, ForeignKey("incomes.id", ondelete="SET NULL"), nullable=True)
    lender_borrowing_id = Column(Integer, ForeignKey("borrowings.id", ondelete="SET NULL"), nullable=True)

    settled_at = Column(DateTime(timezone=True), server_default=func.now())
