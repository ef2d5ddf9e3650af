# Repository layer - 작업 단위 세션 위의 데이터 접근

from .base import BaseRepository
from .user_repository import UserRepository
from .account_repository import AccountRepository
from .transaction_repository import TransactionRepository
from .grant_task_repository import GrantTaskRepository
from .audit_repository import AuditRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "AccountRepository",
    "TransactionRepository",
    "GrantTaskRepository",
    "AuditRepository",
]
