from decimal import Decimal
from pydantic import BaseModel

class MemberBalance(BaseModel):
    user_id: int
    user_name: str
    total_lent: Decimal
    total_borrowed: Decimal
    net_balance: Decimal

class TransferOut(BaseModel):
    from_user_id: int
    from_name: str | None = None
    to_user_id: int
    to_name: str | None = None
    amount: Decimal

class GroupBalanceOut(BaseModel):
    group_id: int
    balances: list[MemberBalance]
    settlements: list[TransferOut]

class DebtSettlementPreview(GroupBalanceOut):
    total_transactions: int
    original_transactions: int
