"""
토큰 지급 태스크 데이터 모델

회의 게스트 또는 현장 방문 기록에서 자동 생성되는 심사 대기 보상 제안입니다.
승인 시 MEETING_INVITE_REWARD 거래 하나를 만들고 token_transaction_id로 연결합니다.
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from partnerledger.models.base import BaseModel, BigIntPK, TokenAmount


class GrantTaskSource(str, enum.Enum):
    MEETING_GUEST = "MEETING_GUEST"  # 회의 외부 게스트
    ONSITE_VISIT = "ONSITE_VISIT"  # 현장 방문 기록


class GrantTaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TokenGrantTask(BaseModel):
    """
    토큰 지급 태스크

    - (task_source, source_guest_id) 유니크: 같은 이벤트가 다시 들어와도 태스크는 하나
    - 게스트 정보는 생성 시점 스냅샷으로 저장 (중복 방문 경고 계산용)
    - meeting_id / meeting_topic 은 MEETING_GUEST, visit_date 는 ONSITE_VISIT 전용
    """

    __tablename__ = "token_grant_tasks"
    __table_args__ = (
        UniqueConstraint(
            "task_source", "source_guest_id", name="uq_grant_task_source_guest"
        ),
        Index("idx_grant_tasks_status", "status"),
        Index("idx_grant_tasks_inviter", "inviter_user_id"),
        Index("idx_grant_tasks_guest_identity", "guest_name", "guest_organization"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    task_source: Mapped[GrantTaskSource] = mapped_column(
        SqlEnum(GrantTaskSource, name="grant_task_source", native_enum=False),
        nullable=False,
    )
    source_guest_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    inviter_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    status: Mapped[GrantTaskStatus] = mapped_column(
        SqlEnum(GrantTaskStatus, name="grant_task_status", native_enum=False),
        nullable=False,
        default=GrantTaskStatus.PENDING,
    )

    # 게스트 스냅샷
    guest_name: Mapped[str] = mapped_column(String(100), nullable=False)
    guest_organization: Mapped[str] = mapped_column(
        String(200), nullable=False, default=""
    )
    guest_title: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    guest_category: Mapped[str] = mapped_column(String(50), nullable=False)

    # 출처별 페이로드
    meeting_id: Mapped[Optional[int]] = mapped_column(BigIntPK, nullable=True)
    meeting_topic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    visit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    default_amount: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False)
    final_amount: Mapped[Optional[Decimal]] = mapped_column(TokenAmount, nullable=True)

    admin_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    admin_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    token_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("token_transactions.id"), nullable=True
    )

    def __repr__(self):
        return (
            f"<TokenGrantTask(id={self.id}, source={self.task_source}, "
            f"status={self.status}, inviter={self.inviter_user_id})>"
        )
