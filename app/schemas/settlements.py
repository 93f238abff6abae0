from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

class TransferIn(BaseModel):
    from_user_id: int
    to_user_id: int
    amount: Decimal = Field(gt=0)

class DebtSettlementRequest(BaseModel):
    # recomputed from current balances when omitted
    transfers: Optional[List[TransferIn]] = None

class SettleBalanceRequest(BaseModel):
    from_user_id: int
    to_user_id: int
    amount: Decimal = Field(gt=0)
    settlement_account_id: Optional[int] = None

class SettleSplitsRequest(BaseModel):
    split_ids: List[int] = Field(min_length=1)

class TransferResult(BaseModel):
    from_user_id: int
    to_user_id: int
    amount: Decimal
    status: Literal["settled", "failed", "no_debts"]
    settlement_id: Optional[int] = None
    settled_splits: int = 0
    error: Optional[str] = None

class SettlementRunOut(BaseModel):
    group_id: int
    results: List[TransferResult]
    settled_count: int
    failed_count: int
    total_settled: Decimal

class SettleSplitsOut(BaseModel):
    settled_splits: int

class SettlementOut(BaseModel):
    id: int
    group_id: int
    amount: Decimal
    allocated_amount: Decimal
    borrower_user_id: int
    lender_user_id: int
    borrower_account_id: Optional[int] = None
    lender_account_id: Optional[int] = None
    settled_by_user_id: int
    borrower_expense_id: Optional[int] = None
    borrower_lending_id: Optional[int] = None
    lender_income_id: Optional[int] = None
    lender_borrowing_id: Optional[int] = None
    settled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SettlementReversalOut(BaseModel):
    settlement_id: int
    unsettled_splits: int
    reversed_postings: int

class ReconciliationIssue(BaseModel):
    kind: Literal["orphan_split", "missing_posting", "allocation_mismatch"]
    entity_id: int
    detail: str

class ReconciliationOut(BaseModel):
    group_id: int
    consistent: bool
    issues: List[ReconciliationIssue]
