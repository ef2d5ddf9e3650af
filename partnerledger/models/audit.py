"""
감사 로그 / 프로젝트 타임라인 모델

원장 변경과 같은 작업 단위에서 기록되므로, 롤백된 연산은 흔적을 남기지 않는다.
payload 는 JSON 이라 금액은 문자열로 저장한다.
"""

import enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Enum as SqlEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partnerledger.models.base import BaseModel, BigIntPK


class AuditAction(str, enum.Enum):
    TOKEN_TRANSFER = "TOKEN_TRANSFER"
    TOKEN_GRANT = "TOKEN_GRANT"
    TOKEN_DEDUCT = "TOKEN_DEDUCT"
    TOKEN_DIVIDEND = "TOKEN_DIVIDEND"
    TOKEN_GRANT_APPROVED = "TOKEN_GRANT_APPROVED"
    TOKEN_GRANT_REJECTED = "TOKEN_GRANT_REJECTED"


class AuditObjectType(str, enum.Enum):
    TOKEN_TRANSACTION = "TOKEN_TRANSACTION"
    TOKEN_GRANT_TASK = "TOKEN_GRANT_TASK"
    PROJECT = "PROJECT"


class ProjectEventType(str, enum.Enum):
    TOKEN_TRANSFER_COMPLETED = "TOKEN_TRANSFER_COMPLETED"
    TOKEN_DIVIDEND_DISTRIBUTED = "TOKEN_DIVIDEND_DISTRIBUTED"


class AuditLog(BaseModel):
    """누가 어떤 객체에 무엇을 했는지 (수정/삭제 없음)"""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_object", "object_type", "object_id"),
        Index("idx_audit_logs_user", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    action: Mapped[AuditAction] = mapped_column(
        SqlEnum(AuditAction, name="audit_action", native_enum=False), nullable=False
    )
    object_type: Mapped[AuditObjectType] = mapped_column(
        SqlEnum(AuditObjectType, name="audit_object_type", native_enum=False),
        nullable=False,
    )
    object_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" 는 declarative 예약어
    details: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    def __repr__(self):
        return (
            f"<AuditLog(id={self.id}, action={self.action}, "
            f"object={self.object_type}:{self.object_id})>"
        )


class ProjectEvent(BaseModel):
    """프로젝트 타임라인 항목 (프로젝트 자체는 외부 시스템 소관이라 FK 없음)"""

    __tablename__ = "project_events"
    __table_args__ = (Index("idx_project_events_project", "project_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    event_type: Mapped[ProjectEventType] = mapped_column(
        SqlEnum(ProjectEventType, name="project_event_type", native_enum=False),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
