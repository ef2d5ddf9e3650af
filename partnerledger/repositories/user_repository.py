from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from partnerledger.models.user import User as UserModel, UserRole
from partnerledger.schemas.user import User as UserSchema
from partnerledger.repositories.base import BaseRepository


class UserRepository(BaseRepository[UserModel, UserSchema]):
    """사용자 조회 (원장은 사용자를 만들거나 수정하지 않음)"""

    def __init__(self, db: Session):
        super().__init__(UserModel, UserSchema, db)

    def get_by_email(self, email: str) -> Optional[UserSchema]:
        model_instance = self.db.execute(
            select(UserModel).where(UserModel.email == email)
        ).scalar_one_or_none()
        return self._to_schema(model_instance)

    def get_admin_ids(self) -> List[int]:
        """알림 대상 활성 관리자 ID 목록"""
        return list(
            self.db.execute(
                select(UserModel.id).where(
                    UserModel.role.in_([UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value]),
                    UserModel.is_active.is_(True),
                )
            )
            .scalars()
            .all()
        )
