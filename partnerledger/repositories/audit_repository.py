"""
감사 로그 리포지토리

기록 메서드는 원장 변경과 같은 세션(작업 단위)에서만 호출한다.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from partnerledger.models.audit import (
    AuditAction,
    AuditLog,
    AuditObjectType,
    ProjectEvent,
    ProjectEventType,
)
from partnerledger.repositories.base import BaseRepository
from partnerledger.schemas.audit import AuditLogResponse


class AuditRepository(BaseRepository[AuditLog, AuditLogResponse]):
    def __init__(self, db: Session):
        super().__init__(AuditLog, AuditLogResponse, db)

    def record(
        self,
        *,
        user_id: Optional[int],
        action: AuditAction,
        object_type: AuditObjectType,
        object_id: int,
        summary: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        return self.add(
            AuditLog(
                user_id=user_id,
                action=action,
                object_type=object_type,
                object_id=object_id,
                summary=summary,
                details=details or {},
            )
        )

    def record_project_event(
        self,
        *,
        project_id: int,
        event_type: ProjectEventType,
        title: str,
        description: str,
        payload: Dict[str, Any],
        created_by_id: Optional[int],
    ) -> ProjectEvent:
        event = ProjectEvent(
            project_id=project_id,
            event_type=event_type,
            title=title,
            description=description,
            payload=payload,
            created_by_id=created_by_id,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def list_logs(
        self,
        object_type: Optional[AuditObjectType] = None,
        object_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        limit: int = 50,
    ) -> List[AuditLog]:
        """감사 로그 (최신순)"""
        stmt = select(AuditLog)
        if object_type is not None:
            stmt = stmt.where(AuditLog.object_type == object_type)
        if object_id is not None:
            stmt = stmt.where(AuditLog.object_id == object_id)
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def list_project_events(self, project_id: int) -> List[ProjectEvent]:
        return list(
            self.db.execute(
                select(ProjectEvent)
                .where(ProjectEvent.project_id == project_id)
                .order_by(ProjectEvent.created_at.asc(), ProjectEvent.id.asc())
            )
            .scalars()
            .all()
        )
