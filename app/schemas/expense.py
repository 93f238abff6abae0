from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

class LenderInput(BaseModel):
    user_id: int
    amount: Decimal = Field(gt=0)

class SplitInput(BaseModel):
    user_id: int
    # required unless split_type is EQUAL
    amount: Optional[Decimal] = Field(default=None, gt=0)

class GroupExpenseCreate(BaseModel):
    description: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    date: Optional[datetime] = None
    split_type: Literal["EQUAL", "EXACT", "PERCENTAGE"] = "EQUAL"
    account_id: Optional[int] = None
    # defaults to the caller fronting the whole amount
    lenders: Optional[List[LenderInput]] = None
    splits: List[SplitInput] = Field(min_length=1)

class LenderOut(BaseModel):
    user_id: int
    amount: Decimal

    class Config:
        from_attributes = True

class SplitOut(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    settled: bool
    settled_at: Optional[datetime] = None
    settlement_id: Optional[int] = None

    class Config:
        from_attributes = True

class GroupExpenseOut(BaseModel):
    id: int
    group_id: int
    description: str
    amount: Decimal
    date: Optional[datetime] = None
    split_type: str
    created_by: int
    lenders: List[LenderOut]
    splits: List[SplitOut]

    class Config:
        from_attributes = True
