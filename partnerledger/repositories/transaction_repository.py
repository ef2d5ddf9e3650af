"""
거래 리포지토리

거래 행의 생성/잠금 조회와 내역/통계 조회를 담당합니다.
상태 전이 규칙은 서비스 계층(transfer_state)이 검증하고, 여기서는 저장만 합니다.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import ColumnElement, and_, case, func, or_, select, true
from sqlalchemy.orm import Session

from partnerledger.core.exceptions import NotFoundError
from partnerledger.core.types import as_decimal
from partnerledger.models.token import (
    TokenTransaction,
    TransactionDirection,
    TransactionStatus,
)
from partnerledger.repositories.base import BaseRepository
from partnerledger.schemas.token import (
    AdminTransactionFilter,
    SortOrder,
    TransactionSortField,
    TokenTransactionResponse,
    TransactionHistoryFilter,
)


def scope_conditions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    project_id: Optional[int] = None,
) -> List[ColumnElement[bool]]:
    """생성일 구간(양 끝 포함)과 관련 프로젝트 조건"""
    conditions: List[ColumnElement[bool]] = []
    if project_id is not None:
        conditions.append(TokenTransaction.related_project_id == project_id)
    if start_date:
        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        conditions.append(TokenTransaction.created_at >= start)
    if end_date:
        end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
        conditions.append(TokenTransaction.created_at <= end)
    return conditions


class TransactionRepository(BaseRepository[TokenTransaction, TokenTransactionResponse]):
    def __init__(self, db: Session):
        super().__init__(TokenTransaction, TokenTransactionResponse, db)

    def create(
        self,
        *,
        amount: Decimal,
        direction: TransactionDirection,
        status: TransactionStatus,
        reason: str,
        from_user_id: Optional[int] = None,
        to_user_id: Optional[int] = None,
        admin_user_id: Optional[int] = None,
        admin_comment: Optional[str] = None,
        related_project_id: Optional[int] = None,
        related_meeting_id: Optional[int] = None,
        related_guest_id: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> TokenTransaction:
        tx = TokenTransaction(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            direction=direction,
            status=status,
            reason=reason,
            admin_user_id=admin_user_id,
            admin_comment=admin_comment,
            related_project_id=related_project_id,
            related_meeting_id=related_meeting_id,
            related_guest_id=related_guest_id,
            completed_at=completed_at,
        )
        return self.add(tx)

    def lock_transaction(self, transaction_id: int) -> TokenTransaction:
        tx = self.db.execute(
            select(TokenTransaction)
            .where(TokenTransaction.id == transaction_id)
            .with_for_update()
        ).scalar_one_or_none()
        if tx is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                {"transaction_id": transaction_id},
            )
        return tx

    def require(self, transaction_id: int) -> TokenTransaction:
        tx = self.get_model(transaction_id)
        if tx is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                {"transaction_id": transaction_id},
            )
        return tx

    def list_for_user(
        self, user_id: int, filters: TransactionHistoryFilter
    ) -> Tuple[List[TokenTransaction], int]:
        """사용자가 보내거나 받은 거래 (최신순)"""
        conditions = [
            or_(
                TokenTransaction.from_user_id == user_id,
                TokenTransaction.to_user_id == user_id,
            )
        ]
        if filters.direction:
            conditions.append(TokenTransaction.direction == filters.direction)
        if filters.status:
            conditions.append(TokenTransaction.status == filters.status)
        conditions.extend(
            scope_conditions(filters.start_date, filters.end_date, filters.project_id)
        )

        where = and_(*conditions)
        total = self.db.execute(
            select(func.count(TokenTransaction.id)).where(where)
        ).scalar_one()

        items = (
            self.db.execute(
                select(TokenTransaction)
                .where(where)
                .order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            )
            .scalars()
            .all()
        )
        return list(items), total

    def list_by_status(
        self,
        status: TransactionStatus,
        to_user_id: Optional[int] = None,
        from_user_id: Optional[int] = None,
    ) -> List[TokenTransaction]:
        """상태별 이체 목록 (오래된 순 - 처리 대기열)"""
        stmt = select(TokenTransaction).where(
            TokenTransaction.direction == TransactionDirection.TRANSFER,
            TokenTransaction.status == status,
        )
        if to_user_id is not None:
            stmt = stmt.where(TokenTransaction.to_user_id == to_user_id)
        if from_user_id is not None:
            stmt = stmt.where(TokenTransaction.from_user_id == from_user_id)
        stmt = stmt.order_by(TokenTransaction.created_at.asc(), TokenTransaction.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    def sum_completed(
        self, user_id: int, incoming: bool
    ) -> Dict[TransactionDirection, Decimal]:
        """완료 거래의 방향별 합계 (incoming=True 면 받은 쪽, False 면 나간 쪽)"""
        party = (
            TokenTransaction.to_user_id if incoming else TokenTransaction.from_user_id
        )
        rows = self.db.execute(
            select(TokenTransaction.direction, func.sum(TokenTransaction.amount))
            .where(
                party == user_id,
                TokenTransaction.status == TransactionStatus.COMPLETED,
            )
            .group_by(TokenTransaction.direction)
        ).all()
        return {direction: as_decimal(total) for direction, total in rows}

    def count_completed(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(TokenTransaction.id)).where(
                or_(
                    TokenTransaction.from_user_id == user_id,
                    TokenTransaction.to_user_id == user_id,
                ),
                TokenTransaction.status == TransactionStatus.COMPLETED,
            )
        ).scalar_one()

    def pending_outgoing(self, user_id: int) -> Tuple[int, Decimal]:
        """보낸 이체 중 아직 예약이 걸려 있는 건수와 합계"""
        count, total = self.db.execute(
            select(func.count(TokenTransaction.id), func.sum(TokenTransaction.amount)).where(
                TokenTransaction.from_user_id == user_id,
                TokenTransaction.direction == TransactionDirection.TRANSFER,
                TokenTransaction.status.in_(
                    [
                        TransactionStatus.PENDING_ADMIN_APPROVAL,
                        TransactionStatus.PENDING_RECEIVER_CONFIRM,
                    ]
                ),
            )
        ).one()
        return count, as_decimal(total)

    def count_pending_incoming(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(TokenTransaction.id)).where(
                TokenTransaction.to_user_id == user_id,
                TokenTransaction.direction == TransactionDirection.TRANSFER,
                TokenTransaction.status == TransactionStatus.PENDING_RECEIVER_CONFIRM,
            )
        ).scalar_one()

    # ------------------------------------------------------------------
    # 관리자 전체 조회
    # ------------------------------------------------------------------

    _SORT_COLUMNS = {
        TransactionSortField.CREATED_AT: TokenTransaction.created_at,
        TransactionSortField.AMOUNT: TokenTransaction.amount,
        TransactionSortField.COMPLETED_AT: TokenTransaction.completed_at,
    }

    def list_all(
        self, filters: AdminTransactionFilter
    ) -> Tuple[List[TokenTransaction], int]:
        conditions = scope_conditions(filters.start_date, filters.end_date, filters.project_id)
        if filters.direction:
            conditions.append(TokenTransaction.direction == filters.direction)
        if filters.status:
            conditions.append(TokenTransaction.status == filters.status)
        where = and_(true(), *conditions)

        total = self.db.execute(
            select(func.count(TokenTransaction.id)).where(where)
        ).scalar_one()

        column = self._SORT_COLUMNS[filters.sort_by]
        if filters.sort_order == SortOrder.ASC:
            order = (column.asc(), TokenTransaction.id.asc())
        else:
            order = (column.desc(), TokenTransaction.id.desc())
        items = (
            self.db.execute(
                select(TokenTransaction)
                .where(where)
                .order_by(*order)
                .limit(filters.limit)
                .offset(filters.offset)
            )
            .scalars()
            .all()
        )
        return list(items), total

    def sum_completed_by_direction(
        self, conditions: List[ColumnElement[bool]]
    ) -> Dict[TransactionDirection, Decimal]:
        rows = self.db.execute(
            select(TokenTransaction.direction, func.sum(TokenTransaction.amount))
            .where(TokenTransaction.status == TransactionStatus.COMPLETED, *conditions)
            .group_by(TokenTransaction.direction)
        ).all()
        return {direction: as_decimal(total) for direction, total in rows}

    def count_by_status(
        self, conditions: List[ColumnElement[bool]]
    ) -> Dict[TransactionStatus, int]:
        rows = self.db.execute(
            select(TokenTransaction.status, func.count(TokenTransaction.id))
            .where(true(), *conditions)
            .group_by(TokenTransaction.status)
        ).all()
        return {status: count for status, count in rows}

    def project_totals(self) -> List[Tuple[int, Decimal, Decimal, int]]:
        """프로젝트별 완료 거래 (project_id, 이체 합계, 배당 합계, 건수), 합계 큰 순"""

        def direction_sum(direction: TransactionDirection):
            return func.coalesce(
                func.sum(
                    case((TokenTransaction.direction == direction, TokenTransaction.amount), else_=0)
                ),
                0,
            )

        transferred = direction_sum(TransactionDirection.TRANSFER)
        dividend = direction_sum(TransactionDirection.DIVIDEND)
        rows = self.db.execute(
            select(
                TokenTransaction.related_project_id,
                transferred,
                dividend,
                func.count(TokenTransaction.id),
            )
            .where(
                TokenTransaction.related_project_id.is_not(None),
                TokenTransaction.status == TransactionStatus.COMPLETED,
            )
            .group_by(TokenTransaction.related_project_id)
        ).all()
        totals = [
            (project_id, as_decimal(t), as_decimal(d), count)
            for project_id, t, d, count in rows
        ]
        totals.sort(key=lambda row: (-(row[1] + row[2]), row[0]))
        return totals
