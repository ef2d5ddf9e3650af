"""
계정 리포지토리 - 잔액/동결 금액 변경의 유일한 경로

모든 메서드는 실행기가 넘겨준 세션 위에서만 호출됩니다. 변경 메서드는
대상 행을 SELECT ... FOR UPDATE 로 잠근 뒤 검증하고 갱신합니다.

- credit: balance += amount
- debit: available >= amount 검증 후 balance -= amount
- reserve: available >= amount 검증 후 frozen_amount += amount
- release: frozen_amount -= amount (frozen_amount >= amount 이어야 함)
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from partnerledger.core.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from partnerledger.core.types import as_decimal, to_amount
from partnerledger.models.token import TokenAccount
from partnerledger.models.user import User
from partnerledger.repositories.base import BaseRepository
from partnerledger.schemas.token import (
    AccountOverviewFilter,
    AccountResponse,
    AccountSortField,
    SortOrder,
)

logger = logging.getLogger(__name__)


class AccountRepository(BaseRepository[TokenAccount, AccountResponse]):
    def __init__(self, db: Session):
        super().__init__(TokenAccount, AccountResponse, db)

    def get_account(self, user_id: int) -> Optional[TokenAccount]:
        return self.db.execute(
            select(TokenAccount).where(TokenAccount.user_id == user_id)
        ).scalar_one_or_none()

    def lock_account(self, user_id: int) -> TokenAccount:
        """계정 행 잠금 조회 (없으면 NotFoundError)"""
        account = self.db.execute(
            select(TokenAccount)
            .where(TokenAccount.user_id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        if account is None:
            raise NotFoundError(
                f"Token account not found for user {user_id}", {"user_id": user_id}
            )
        return account

    def require_account(self, user_id: int) -> TokenAccount:
        account = self.get_account(user_id)
        if account is None:
            raise NotFoundError(
                f"Token account not found for user {user_id}", {"user_id": user_id}
            )
        return account

    def get_balance(self, user_id: int) -> Dict[str, Decimal]:
        """잔액 조회 - {balance, frozen, available}"""
        account = self.require_account(user_id)
        balance = as_decimal(account.balance)
        frozen = as_decimal(account.frozen_amount)
        return {"balance": balance, "frozen": frozen, "available": balance - frozen}

    def create_account(self, user_id: int, initial_amount: Decimal) -> TokenAccount:
        if self.get_account(user_id) is not None:
            raise ValidationError(
                f"Token account already exists for user {user_id}", {"user_id": user_id}
            )

        initial = as_decimal(initial_amount)
        if initial < 0:
            raise ValidationError("initial_amount must not be negative")

        account = TokenAccount(
            user_id=user_id,
            balance=initial,
            frozen_amount=Decimal("0.00"),
            initial_amount=initial,
        )
        try:
            with self.db.begin_nested():
                return self.add(account)
        except IntegrityError:
            # 동시 개설 요청이 먼저 커밋됨
            logger.info(f"Token account for user {user_id} was opened concurrently")
            raise ValidationError(
                f"Token account already exists for user {user_id}", {"user_id": user_id}
            )

    def credit(self, user_id: int, amount: Decimal) -> TokenAccount:
        value = to_amount(amount)
        account = self.lock_account(user_id)
        account.balance = as_decimal(account.balance) + value
        self.db.flush()
        return account

    def debit(self, user_id: int, amount: Decimal) -> TokenAccount:
        value = to_amount(amount)
        account = self.lock_account(user_id)
        self._ensure_available(account, value)
        account.balance = as_decimal(account.balance) - value
        self.db.flush()
        return account

    def reserve(self, user_id: int, amount: Decimal) -> TokenAccount:
        value = to_amount(amount)
        account = self.lock_account(user_id)
        self._ensure_available(account, value)
        account.frozen_amount = as_decimal(account.frozen_amount) + value
        self.db.flush()
        return account

    def release(self, user_id: int, amount: Decimal) -> TokenAccount:
        value = to_amount(amount)
        account = self.lock_account(user_id)
        frozen = as_decimal(account.frozen_amount)
        if frozen < value:
            # 예약보다 큰 해제는 원장 불일치
            logger.error(
                f"Release exceeds frozen amount: user={user_id}, frozen={frozen}, release={value}"
            )
            raise ValidationError(
                "Release amount exceeds frozen amount",
                {"user_id": user_id, "frozen": str(frozen), "amount": str(value)},
            )
        account.frozen_amount = frozen - value
        self.db.flush()
        return account

    def list_overview(
        self, filters: AccountOverviewFilter
    ) -> Tuple[List[Tuple[TokenAccount, User]], int]:
        """전체 계정 + 사용자 정보 (관리자 목록)"""
        stmt = select(TokenAccount, User).join(User, User.id == TokenAccount.user_id)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(or_(User.nickname.ilike(pattern), User.email.ilike(pattern)))

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        column = {
            AccountSortField.BALANCE: TokenAccount.balance,
            AccountSortField.INITIAL_AMOUNT: TokenAccount.initial_amount,
            AccountSortField.CREATED_AT: TokenAccount.created_at,
            AccountSortField.USER_NAME: User.nickname,
        }[filters.sort_by]
        if filters.sort_order == SortOrder.ASC:
            stmt = stmt.order_by(column.asc(), TokenAccount.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), TokenAccount.id.desc())

        rows = self.db.execute(stmt.limit(filters.limit).offset(filters.offset)).all()
        return [(account, user) for account, user in rows], total

    def totals(self) -> dict:
        """전체 계정 수와 잔액/동결/초기 지급 합계"""
        count, balance, frozen, initial = self.db.execute(
            select(
                func.count(TokenAccount.id),
                func.sum(TokenAccount.balance),
                func.sum(TokenAccount.frozen_amount),
                func.sum(TokenAccount.initial_amount),
            )
        ).one()
        return {
            "account_count": count,
            "balance": as_decimal(balance),
            "frozen": as_decimal(frozen),
            "initial_amount": as_decimal(initial),
        }

    @staticmethod
    def _ensure_available(account: TokenAccount, amount: Decimal) -> None:
        available = as_decimal(account.balance) - as_decimal(account.frozen_amount)
        if available < amount:
            raise InsufficientFundsError(
                f"Insufficient balance: available {available}, required {amount}",
                {
                    "user_id": account.user_id,
                    "available": str(available),
                    "required": str(amount),
                },
            )
