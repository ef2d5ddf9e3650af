"""
토큰 원장 데이터 모델

계정(TokenAccount)은 사용자당 하나이며 잔액과 동결 금액을 보관합니다.
거래(TokenTransaction)는 토큰 이동의 모든 기록으로, COMPLETED가 되는 순간
단 한 번만 잔액에 반영되고 이후에는 수정되지 않습니다. 물리 삭제는 없습니다.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from partnerledger.models.base import BaseModel, BigIntPK, TokenAmount


class TransactionDirection(str, enum.Enum):
    """거래 방향 - 토큰이 움직인 이유"""

    TRANSFER = "TRANSFER"  # 파트너 간 이체
    ADMIN_GRANT = "ADMIN_GRANT"  # 관리자 지급
    ADMIN_DEDUCT = "ADMIN_DEDUCT"  # 관리자 차감
    DIVIDEND = "DIVIDEND"  # 프로젝트 배당
    MEETING_INVITE_REWARD = "MEETING_INVITE_REWARD"  # 게스트 초청 보상


class TransactionStatus(str, enum.Enum):
    """거래 상태"""

    PENDING_ADMIN_APPROVAL = "PENDING_ADMIN_APPROVAL"
    PENDING_RECEIVER_CONFIRM = "PENDING_RECEIVER_CONFIRM"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class TokenAccount(BaseModel):
    """
    토큰 계정 - 사용자당 1개

    - balance: 동결분을 포함한 전체 잔액
    - frozen_amount: 진행 중인 이체에 예약된 금액
    - available = balance - frozen_amount
    - initial_amount: 개설 시 지급액 (감사용, 변경 불가)
    """

    __tablename__ = "token_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_token_accounts_balance_non_negative"),
        CheckConstraint(
            "frozen_amount >= 0 AND frozen_amount <= balance",
            name="ck_token_accounts_frozen_within_balance",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        TokenAmount, nullable=False, default=Decimal("0")
    )
    frozen_amount: Mapped[Decimal] = mapped_column(
        TokenAmount, nullable=False, default=Decimal("0")
    )
    initial_amount: Mapped[Decimal] = mapped_column(
        TokenAmount, nullable=False, default=Decimal("0")
    )

    @property
    def available(self) -> Decimal:
        return Decimal(self.balance) - Decimal(self.frozen_amount)

    def __repr__(self):
        return (
            f"<TokenAccount(user_id={self.user_id}, balance={self.balance}, "
            f"frozen={self.frozen_amount})>"
        )


class TokenTransaction(BaseModel):
    """토큰 거래 기록"""

    __tablename__ = "token_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_token_transactions_amount_positive"),
        Index("idx_token_tx_from_user", "from_user_id", "created_at"),
        Index("idx_token_tx_to_user", "to_user_id", "created_at"),
        Index("idx_token_tx_status", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # 시스템 지급이면 from_user_id가, 시스템 차감이면 to_user_id가 비어 있음
    from_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    to_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(
        SqlEnum(TransactionDirection, name="token_tx_direction", native_enum=False),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SqlEnum(TransactionStatus, name="token_tx_status", native_enum=False),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    admin_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )

    # 외부 도메인 참조 (프로젝트/회의/게스트는 외부 시스템 소관이라 FK 없음)
    related_project_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, nullable=True
    )
    related_meeting_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, nullable=True
    )
    related_guest_id: Mapped[Optional[int]] = mapped_column(BigIntPK, nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return (
            f"<TokenTransaction(id={self.id}, direction={self.direction}, "
            f"status={self.status}, amount={self.amount})>"
        )
