# 메타데이터 등록을 위해 모든 모델을 임포트

from .base import Base, BaseModel
from .user import User, UserRole
from .token import (
    TokenAccount,
    TokenTransaction,
    TransactionDirection,
    TransactionStatus,
)
from .grant_task import GrantTaskSource, GrantTaskStatus, TokenGrantTask
from .audit import (
    AuditAction,
    AuditLog,
    AuditObjectType,
    ProjectEvent,
    ProjectEventType,
)

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "UserRole",
    "TokenAccount",
    "TokenTransaction",
    "TransactionDirection",
    "TransactionStatus",
    "TokenGrantTask",
    "GrantTaskSource",
    "GrantTaskStatus",
    "AuditLog",
    "AuditAction",
    "AuditObjectType",
    "ProjectEvent",
    "ProjectEventType",
]
