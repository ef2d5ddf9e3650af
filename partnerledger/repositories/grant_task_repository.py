from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select, true
from sqlalchemy.orm import Session

from partnerledger.core.exceptions import NotFoundError
from partnerledger.core.types import as_decimal
from partnerledger.models.grant_task import (
    GrantTaskSource,
    GrantTaskStatus,
    TokenGrantTask,
)
from partnerledger.repositories.base import BaseRepository
from partnerledger.schemas.grant_task import GrantTaskFilter, GrantTaskResponse


class GrantTaskRepository(BaseRepository[TokenGrantTask, GrantTaskResponse]):
    """토큰 지급 태스크 리포지토리

    태스크 -> 응답 변환은 출처 유니언과 경고가 필요해 서비스에서 수행한다.
    """

    def __init__(self, db: Session):
        super().__init__(TokenGrantTask, GrantTaskResponse, db)

    def find_by_source(
        self, task_source: GrantTaskSource, source_guest_id: int
    ) -> Optional[TokenGrantTask]:
        return self.db.execute(
            select(TokenGrantTask).where(
                TokenGrantTask.task_source == task_source,
                TokenGrantTask.source_guest_id == source_guest_id,
            )
        ).scalar_one_or_none()

    def lock_task(self, task_id: int) -> TokenGrantTask:
        task = self.db.execute(
            select(TokenGrantTask)
            .where(TokenGrantTask.id == task_id)
            .with_for_update()
        ).scalar_one_or_none()
        if task is None:
            raise NotFoundError(f"Grant task {task_id} not found", {"task_id": task_id})
        return task

    def require(self, task_id: int) -> TokenGrantTask:
        task = self.get_model(task_id)
        if task is None:
            raise NotFoundError(f"Grant task {task_id} not found", {"task_id": task_id})
        return task

    def list_tasks(self, filters: GrantTaskFilter) -> Tuple[List[TokenGrantTask], int]:
        conditions = []
        if filters.status:
            conditions.append(TokenGrantTask.status == filters.status)
        if filters.task_source:
            conditions.append(TokenGrantTask.task_source == filters.task_source)
        if filters.inviter_user_id is not None:
            conditions.append(TokenGrantTask.inviter_user_id == filters.inviter_user_id)

        where = and_(true(), *conditions)
        total = self.db.execute(
            select(func.count(TokenGrantTask.id)).where(where)
        ).scalar_one()
        items = (
            self.db.execute(
                select(TokenGrantTask)
                .where(where)
                .order_by(TokenGrantTask.created_at.desc(), TokenGrantTask.id.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            )
            .scalars()
            .all()
        )
        return list(items), total

    def find_approved_similar(
        self, guest_name: str, organization: str, exclude_task_id: int
    ) -> List[TokenGrantTask]:
        """같은 소속(소속이 없으면 같은 이름)으로 승인된 다른 태스크 (중복 방문 경고용)"""
        stmt = select(TokenGrantTask).where(
            TokenGrantTask.status == GrantTaskStatus.APPROVED,
            TokenGrantTask.guest_organization == organization,
            TokenGrantTask.id != exclude_task_id,
        )
        if not organization:
            stmt = stmt.where(TokenGrantTask.guest_name == guest_name)
        stmt = stmt.order_by(TokenGrantTask.decided_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def count_by_status(self) -> Dict[GrantTaskStatus, int]:
        rows = self.db.execute(
            select(TokenGrantTask.status, func.count(TokenGrantTask.id)).group_by(
                TokenGrantTask.status
            )
        ).all()
        return {status: count for status, count in rows}

    def sum_granted(self, since: Optional[datetime] = None) -> Decimal:
        stmt = select(func.sum(TokenGrantTask.final_amount)).where(
            TokenGrantTask.status == GrantTaskStatus.APPROVED
        )
        if since is not None:
            stmt = stmt.where(TokenGrantTask.decided_at >= since)
        return as_decimal(self.db.execute(stmt).scalar())
