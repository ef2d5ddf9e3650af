"""
토큰 지급 태스크 API 라우터

- POST /grant-tasks/events/meeting-finished: 회의 종료 이벤트 (관리자/내부)
- POST /grant-tasks/events/visit-logged: 현장 방문 기록 (초청자 = 호출자)
- GET  /grant-tasks: 태스크 목록 (관리자, 대기 태스크는 경고 포함)
- GET  /grant-tasks/my: 내가 초청한 태스크
- GET  /grant-tasks/stats: 처리 통계 (관리자)
- GET  /grant-tasks/{id}: 태스크 상세
- POST /grant-tasks/{id}/approve | /reject: 심사 (관리자)
"""

from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query, status

from partnerledger.containers import Container
from partnerledger.core.auth_middleware import get_current_active_user, require_admin
from partnerledger.models.grant_task import GrantTaskSource, GrantTaskStatus
from partnerledger.schemas.grant_task import (
    ApproveGrantTaskRequest,
    GrantTaskApprovalResponse,
    GrantTaskFilter,
    GrantTaskListResponse,
    GrantTaskResponse,
    GrantTaskStatsResponse,
    MeetingFinishedEvent,
    MeetingFinishedResult,
    RejectGrantTaskRequest,
    VisitLoggedEvent,
)
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.grant_task_service import GrantTaskService

router = APIRouter(prefix="/grant-tasks", tags=["grant-tasks"])


def task_filter(
    task_status: Optional[GrantTaskStatus] = Query(None, alias="status"),
    task_source: Optional[GrantTaskSource] = Query(None),
    inviter_user_id: Optional[int] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> GrantTaskFilter:
    return GrantTaskFilter(
        status=task_status,
        task_source=task_source,
        inviter_user_id=inviter_user_id,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/events/meeting-finished",
    response_model=MeetingFinishedResult,
    status_code=status.HTTP_201_CREATED,
)
@inject
def meeting_finished(
    event: MeetingFinishedEvent,
    current_user: UserSchema = Depends(require_admin),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> MeetingFinishedResult:
    return grant_task_service.on_meeting_finished(event)


@router.post(
    "/events/visit-logged",
    response_model=GrantTaskResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def visit_logged(
    event: VisitLoggedEvent,
    current_user: UserSchema = Depends(get_current_active_user),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskResponse:
    return grant_task_service.on_visit_logged(current_user, event)


@router.get("", response_model=GrantTaskListResponse)
@inject
def list_tasks(
    filters: GrantTaskFilter = Depends(task_filter),
    current_user: UserSchema = Depends(require_admin),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskListResponse:
    return grant_task_service.list_tasks(filters)


@router.get("/my", response_model=GrantTaskListResponse)
@inject
def list_my_tasks(
    filters: GrantTaskFilter = Depends(task_filter),
    current_user: UserSchema = Depends(get_current_active_user),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskListResponse:
    return grant_task_service.get_my_tasks(current_user.id, filters)


@router.get("/stats", response_model=GrantTaskStatsResponse)
@inject
def get_stats(
    current_user: UserSchema = Depends(require_admin),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskStatsResponse:
    return grant_task_service.get_stats()


@router.get("/{task_id}", response_model=GrantTaskResponse)
@inject
def get_task(
    task_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskResponse:
    return grant_task_service.get_task(task_id, current_user)


@router.post("/{task_id}/approve", response_model=GrantTaskApprovalResponse)
@inject
def approve_task(
    request: ApproveGrantTaskRequest,
    task_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskApprovalResponse:
    """승인 - amount_override 가 없으면 기본 지급액"""
    return grant_task_service.approve(
        task_id, current_user, request.amount_override, request.comment
    )


@router.post("/{task_id}/reject", response_model=GrantTaskResponse)
@inject
def reject_task(
    request: RejectGrantTaskRequest,
    task_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    grant_task_service: GrantTaskService = Depends(
        Provide[Container.services.grant_task_service]
    ),
) -> GrantTaskResponse:
    return grant_task_service.reject(task_id, current_user, request.comment)
