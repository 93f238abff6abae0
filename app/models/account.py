from sqlalchemy import (
    Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, func, text
)
from app.db.session import Base

OTHERS_ACCOUNT = "OTHERS_FIXED"
GROUP_LENDING_ACCOUNT = "GROUP_LENDING"

HELPER_ACCOUNT_NAMES = {
    OTHERS_ACCOUNT: "Others",
    GROUP_LENDING_ACCOUNT: "Group Lending/Borrowing",
}

GROUP_CATEGORY_NAME = "Group Expenses"


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="BANK")
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        # one helper account of each kind per user
        Index(
            "uq_user_helper_account",
            "user_id",
            "type",
            unique=True,
            postgresql_where=text("type IN ('OTHERS_FIXED', 'GROUP_LENDING')"),
            sqlite_where=text("type IN ('OTHERS_FIXED', 'GROUP_LENDING')"),
        ),
    )


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="EXPENSE")
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)

    __table_args__ = (
        UniqueConstraint("group_id", "name", "type", name="uq_group_category"),
    )
