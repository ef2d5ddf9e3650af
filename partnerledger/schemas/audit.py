from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from partnerledger.models.audit import AuditAction, AuditObjectType, ProjectEventType


class AuditLogResponse(BaseModel):
    """감사 로그 항목"""

    id: int
    user_id: Optional[int] = Field(None, description="행위자 ID")
    action: AuditAction
    object_type: AuditObjectType
    object_id: int
    summary: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectEventResponse(BaseModel):
    """프로젝트 타임라인 항목"""

    id: int
    project_id: int
    event_type: ProjectEventType
    title: str
    description: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
