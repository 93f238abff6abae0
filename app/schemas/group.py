from pydantic import BaseModel
from typing import Optional
from app.models.group_member import MemberRole

class GroupCreate(BaseModel):
    name: str
    description: Optional[str] = None

class GroupOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_by: int

    class Config:
        from_attributes = True

class GroupMemberAdd(BaseModel):
    user_id: int
    role: MemberRole = MemberRole.MEMBER

class GroupMemberOut(BaseModel):
    user_id: int
    group_id: int
    role: MemberRole

    class Config:
        from_attributes = True
