from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from partnerledger.models.user import UserRole


class User(BaseModel):
    id: int
    email: EmailStr
    nickname: str
    role: UserRole = UserRole.PARTNER
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)


class TokenPayload(BaseModel):
    user_id: int
    sub: EmailStr  # subject, typically user's email
