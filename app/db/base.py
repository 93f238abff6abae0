# Imports every model so Base.metadata is complete (alembic, create_all).
from app.db.session import Base  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.group import Group  # noqa: F401
from app.models.group_member import GroupMember  # noqa: F401
from app.models.account import UserAccount, Category  # noqa: F401
from app.models.group_expense import GroupExpense, GroupLender, ExpenseSplit, SplitCoverage  # noqa: F401
from app.models.ledger import Expense, Income, Lending, Borrowing  # noqa: F401
from app.models.settlement import Settlement  # noqa: F401
from app.models.notification import Notification, ActivityLog  # noqa: F401
