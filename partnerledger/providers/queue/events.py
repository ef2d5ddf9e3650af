from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class LedgerEventType(str, Enum):
    TRANSFER_PENDING_APPROVAL = "TRANSFER_PENDING_APPROVAL"
    TRANSFER_PENDING_CONFIRM = "TRANSFER_PENDING_CONFIRM"
    TRANSFER_REJECTED = "TRANSFER_REJECTED"
    TRANSFER_COMPLETED = "TRANSFER_COMPLETED"
    TRANSFER_DECLINED = "TRANSFER_DECLINED"
    TRANSFER_CANCELLED = "TRANSFER_CANCELLED"
    ADMIN_GRANT = "ADMIN_GRANT"
    ADMIN_DEDUCT = "ADMIN_DEDUCT"
    DIVIDEND_RECEIVED = "DIVIDEND_RECEIVED"
    GRANT_TASK_CREATED = "GRANT_TASK_CREATED"
    GRANT_TASK_APPROVED = "GRANT_TASK_APPROVED"
    GRANT_TASK_REJECTED = "GRANT_TASK_REJECTED"


class LedgerNotificationEvent(BaseModel):
    user_id: int
    event_type: LedgerEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
