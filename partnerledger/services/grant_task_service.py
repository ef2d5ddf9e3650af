"""
토큰 지급 태스크 서비스

회의 종료/현장 방문 이벤트를 심사 대기 태스크로 만들고, 관리자 승인 시
초청한 파트너에게 MEETING_INVITE_REWARD 를 지급합니다.

1. 이벤트 수신: 게스트(방문)당 PENDING 태스크 하나, 기본 지급액은 게스트 분류표에서
2. 심사 화면: 대기 태스크에 중복 방문/분류 경고를 붙여서 제공 (결정을 막지는 않음)
3. 승인: 태스크 APPROVED + 완료 거래 생성 + 잔액 반영이 하나의 SERIALIZABLE 작업 단위
4. 반려: 태스크 REJECTED, 원장 변화 없음 (반려된 태스크는 다시 열 수 없음)
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from partnerledger.core.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    ValidationError,
)
from partnerledger.core.guest_categories import default_amount_for, is_known_category
from partnerledger.core.types import GrantTaskId, UserId, as_decimal, to_amount
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.models.audit import AuditAction, AuditObjectType
from partnerledger.models.grant_task import (
    GrantTaskSource,
    GrantTaskStatus,
    TokenGrantTask,
)
from partnerledger.models.token import TransactionDirection
from partnerledger.providers.queue.events import LedgerEventType
from partnerledger.repositories.audit_repository import AuditRepository
from partnerledger.repositories.grant_task_repository import GrantTaskRepository
from partnerledger.repositories.user_repository import UserRepository
from partnerledger.schemas.grant_task import (
    GrantTaskApprovalResponse,
    GrantTaskFilter,
    GrantTaskListResponse,
    GrantTaskResponse,
    GrantTaskStatsResponse,
    GrantTaskWarning,
    GrantTaskWarningCode,
    GuestSnapshot,
    MeetingFinishedEvent,
    MeetingFinishedResult,
    MeetingGuestSource,
    OnsiteVisitSource,
    VisitLoggedEvent,
)
from partnerledger.schemas.token import TokenTransactionResponse
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.ledger_service import settle_credit
from partnerledger.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def reward_reason(task: TokenGrantTask) -> str:
    if task.task_source == GrantTaskSource.MEETING_GUEST:
        return f"Meeting invite reward: {task.meeting_topic} - guest {task.guest_name}"
    if task.guest_organization:
        return f"Onsite visit invite reward: {task.guest_name} ({task.guest_organization})"
    return f"Onsite visit invite reward: {task.guest_name}"


def build_warnings(
    repo: GrantTaskRepository, task: TokenGrantTask
) -> List[GrantTaskWarning]:
    """심사 참고용 경고 (승인/반려를 막지 않음)"""
    warnings: List[GrantTaskWarning] = []

    similar = repo.find_approved_similar(
        task.guest_name, task.guest_organization, exclude_task_id=task.id
    )
    same_person = [t for t in similar if t.guest_name == task.guest_name]
    same_org = [t for t in similar if t.guest_name != task.guest_name]

    if same_person:
        warnings.append(
            GrantTaskWarning(
                code=GrantTaskWarningCode.SAME_PERSON,
                message=f"{task.guest_name} has already been rewarded {len(same_person)} time(s)",
                related_task_ids=[t.id for t in same_person],
            )
        )
    if same_org:
        warnings.append(
            GrantTaskWarning(
                code=GrantTaskWarningCode.SAME_ORG,
                message=(
                    f"{len(same_org)} other guest(s) from {task.guest_organization} "
                    f"have already been rewarded"
                ),
                related_task_ids=[t.id for t in same_org],
            )
        )
    if not is_known_category(task.guest_category):
        warnings.append(
            GrantTaskWarning(
                code=GrantTaskWarningCode.UNKNOWN_CATEGORY,
                message=f"Unknown guest category: {task.guest_category}",
            )
        )
    if as_decimal(task.default_amount) == 0:
        warnings.append(
            GrantTaskWarning(
                code=GrantTaskWarningCode.ZERO_DEFAULT_AMOUNT,
                message="Default amount is 0; an amount override is required to approve",
            )
        )
    return warnings


def to_task_response(
    repo: GrantTaskRepository, task: TokenGrantTask, with_warnings: bool = True
) -> GrantTaskResponse:
    if task.task_source == GrantTaskSource.MEETING_GUEST:
        source = MeetingGuestSource(
            guest_id=task.source_guest_id,
            meeting_id=task.meeting_id,
            meeting_topic=task.meeting_topic or "",
        )
    else:
        source = OnsiteVisitSource(visit_id=task.source_guest_id, visit_date=task.visit_date)

    warnings = []
    if with_warnings and task.status == GrantTaskStatus.PENDING:
        warnings = build_warnings(repo, task)

    return GrantTaskResponse(
        id=task.id,
        status=task.status,
        source=source,
        inviter_user_id=task.inviter_user_id,
        guest=GuestSnapshot(
            name=task.guest_name,
            organization=task.guest_organization,
            title=task.guest_title,
            category=task.guest_category,
        ),
        default_amount=as_decimal(task.default_amount),
        final_amount=(
            as_decimal(task.final_amount) if task.final_amount is not None else None
        ),
        admin_user_id=task.admin_user_id,
        admin_comment=task.admin_comment,
        decided_at=task.decided_at,
        token_transaction_id=task.token_transaction_id,
        created_at=task.created_at,
        warnings=warnings,
    )


class GrantTaskService:
    """게스트 초청 보상 태스크 생성/심사 서비스"""

    def __init__(
        self, executor: TransactionalExecutor, notification_service: NotificationService
    ):
        self.executor = executor
        self.notification_service = notification_service

    # ------------------------------------------------------------------
    # 이벤트 수신
    # ------------------------------------------------------------------

    def on_meeting_finished(self, event: MeetingFinishedEvent) -> MeetingFinishedResult:
        """회의 종료 - 게스트마다 PENDING 태스크 생성

        초청자가 없는 게스트는 건너뛰고 incomplete 로 보고하며,
        이미 태스크가 있는 게스트는 건너뛴다 (이벤트 재수신).
        """

        def work(session: Session) -> Tuple[MeetingFinishedResult, List[int]]:
            repo = GrantTaskRepository(session)
            result = MeetingFinishedResult(meeting_id=event.meeting_id)

            for guest in event.guests:
                if guest.invited_by_user_id is None:
                    result.incomplete_guest_ids.append(guest.guest_id)
                    continue
                if repo.find_by_source(GrantTaskSource.MEETING_GUEST, guest.guest_id):
                    result.skipped_existing_guest_ids.append(guest.guest_id)
                    continue

                default_amount, _ = default_amount_for(guest.guest_category)
                try:
                    # 동시 재수신이 먼저 넣은 경우 이 게스트만 되돌린다
                    with session.begin_nested():
                        task = repo.add(
                            TokenGrantTask(
                                task_source=GrantTaskSource.MEETING_GUEST,
                                source_guest_id=guest.guest_id,
                                inviter_user_id=guest.invited_by_user_id,
                                status=GrantTaskStatus.PENDING,
                                guest_name=guest.name,
                                guest_organization=guest.organization,
                                guest_title=guest.title,
                                guest_category=guest.guest_category,
                                meeting_id=event.meeting_id,
                                meeting_topic=event.topic,
                                default_amount=default_amount,
                            )
                        )
                except IntegrityError:
                    logger.info(
                        f"Grant task for meeting guest {guest.guest_id} was created concurrently"
                    )
                    result.skipped_existing_guest_ids.append(guest.guest_id)
                    continue
                result.created_task_ids.append(task.id)

            admin_ids = UserRepository(session).get_admin_ids()
            return result, admin_ids

        result, admin_ids = self.executor.run(work)
        if result.incomplete_guest_ids:
            logger.warning(
                f"Meeting {event.meeting_id}: skipped guests without inviter "
                f"{result.incomplete_guest_ids}"
            )
        logger.info(
            f"Meeting {event.meeting_id} finished: created {len(result.created_task_ids)} grant tasks"
        )

        if result.created_task_ids:
            self.notification_service.notify_many(
                admin_ids,
                LedgerEventType.GRANT_TASK_CREATED,
                {"meeting_id": event.meeting_id, "task_ids": result.created_task_ids},
            )
        return result

    def on_visit_logged(
        self, inviter: UserSchema, event: VisitLoggedEvent
    ) -> GrantTaskResponse:
        """현장 방문 기록 - PENDING 태스크 하나 (이미 있으면 기존 태스크 반환)"""

        def work(session: Session) -> Tuple[GrantTaskResponse, bool, List[int]]:
            repo = GrantTaskRepository(session)
            existing = repo.find_by_source(GrantTaskSource.ONSITE_VISIT, event.visit_id)
            if existing is not None:
                return to_task_response(repo, existing), False, []

            default_amount, _ = default_amount_for(event.guest_category)
            try:
                with session.begin_nested():
                    task = repo.add(
                        TokenGrantTask(
                            task_source=GrantTaskSource.ONSITE_VISIT,
                            source_guest_id=event.visit_id,
                            inviter_user_id=inviter.id,
                            status=GrantTaskStatus.PENDING,
                            guest_name=event.guest_name,
                            guest_organization=event.organization,
                            guest_title=event.title,
                            guest_category=event.guest_category,
                            visit_date=event.visit_date,
                            default_amount=default_amount,
                        )
                    )
            except IntegrityError:
                # 동시 재수신 - 먼저 커밋된 태스크를 돌려준다
                existing = repo.find_by_source(
                    GrantTaskSource.ONSITE_VISIT, event.visit_id
                )
                if existing is None:
                    raise
                logger.info(f"Grant task for onsite visit {event.visit_id} was created concurrently")
                return to_task_response(repo, existing), False, []
            admin_ids = UserRepository(session).get_admin_ids()
            return to_task_response(repo, task), True, admin_ids

        result, created, admin_ids = self.executor.run(work)
        if created:
            logger.info(f"Grant task {result.id} created for onsite visit {event.visit_id}")
            self.notification_service.notify_many(
                admin_ids,
                LedgerEventType.GRANT_TASK_CREATED,
                {"task_id": result.id, "visit_id": event.visit_id},
            )
        return result

    # ------------------------------------------------------------------
    # 심사
    # ------------------------------------------------------------------

    def approve(
        self,
        task_id: GrantTaskId,
        actor: UserSchema,
        amount_override: Optional[Decimal] = None,
        comment: Optional[str] = None,
    ) -> GrantTaskApprovalResponse:
        """승인 - 최종 지급액(조정액 또는 기본값)을 초청자에게 입금"""
        self._require_admin(actor)

        def work(session: Session) -> GrantTaskApprovalResponse:
            repo = GrantTaskRepository(session)
            task = repo.lock_task(task_id)
            if task.status != GrantTaskStatus.PENDING:
                raise InvalidStateTransitionError(
                    current_state=GrantTaskStatus(task.status).value, action="approve"
                )

            if amount_override is not None:
                # 조정액은 반올림 없이 그대로 검증
                final = to_amount(amount_override, field="amount_override")
            else:
                final = as_decimal(task.default_amount)
                if final <= 0:
                    raise ValidationError(
                        "Final amount must be greater than zero; provide amount_override",
                        {"task_id": task_id, "default_amount": str(task.default_amount)},
                    )

            is_meeting = task.task_source == GrantTaskSource.MEETING_GUEST
            tx = settle_credit(
                session,
                to_user_id=task.inviter_user_id,
                amount=final,
                direction=TransactionDirection.MEETING_INVITE_REWARD,
                reason=reward_reason(task),
                admin_user_id=actor.id,
                admin_comment=comment,
                related_meeting_id=task.meeting_id if is_meeting else None,
                related_guest_id=task.source_guest_id if is_meeting else None,
            )

            task.status = GrantTaskStatus.APPROVED
            task.final_amount = final
            task.admin_user_id = actor.id
            task.admin_comment = comment
            task.decided_at = datetime.now(timezone.utc)
            task.token_transaction_id = tx.id
            session.flush()
            AuditRepository(session).record(
                user_id=actor.id,
                action=AuditAction.TOKEN_GRANT_APPROVED,
                object_type=AuditObjectType.TOKEN_GRANT_TASK,
                object_id=task.id,
                summary=f"Approved grant of {final} tokens to user {task.inviter_user_id}",
                details={
                    "task_source": GrantTaskSource(task.task_source).value,
                    "source_guest_id": task.source_guest_id,
                    "amount": str(final),
                    "transaction_id": tx.id,
                },
            )

            return GrantTaskApprovalResponse(
                task=to_task_response(repo, task, with_warnings=False),
                transaction=TokenTransactionResponse.model_validate(tx),
            )

        result = self.executor.run_ledger(work)
        logger.info(
            f"Grant task {task_id} approved by admin {actor.id}: "
            f"{result.task.final_amount} to user {result.task.inviter_user_id}"
        )

        self.notification_service.notify(
            result.task.inviter_user_id,
            LedgerEventType.GRANT_TASK_APPROVED,
            {
                "task_id": task_id,
                "transaction_id": result.transaction.id,
                "amount": str(result.task.final_amount),
                "guest_name": result.task.guest.name,
            },
        )
        return result

    def reject(
        self, task_id: GrantTaskId, actor: UserSchema, comment: Optional[str] = None
    ) -> GrantTaskResponse:
        """반려 - 원장 변화 없음"""
        self._require_admin(actor)

        def work(session: Session) -> GrantTaskResponse:
            repo = GrantTaskRepository(session)
            task = repo.lock_task(task_id)
            if task.status != GrantTaskStatus.PENDING:
                raise InvalidStateTransitionError(
                    current_state=GrantTaskStatus(task.status).value, action="reject"
                )

            task.status = GrantTaskStatus.REJECTED
            task.admin_user_id = actor.id
            task.admin_comment = comment
            task.decided_at = datetime.now(timezone.utc)
            session.flush()
            AuditRepository(session).record(
                user_id=actor.id,
                action=AuditAction.TOKEN_GRANT_REJECTED,
                object_type=AuditObjectType.TOKEN_GRANT_TASK,
                object_id=task.id,
                summary=f"Rejected grant for user {task.inviter_user_id}",
                details={
                    "task_source": GrantTaskSource(task.task_source).value,
                    "source_guest_id": task.source_guest_id,
                    "comment": comment,
                },
            )
            return to_task_response(repo, task, with_warnings=False)

        result = self.executor.run(work)
        logger.info(f"Grant task {task_id} rejected by admin {actor.id}")

        self.notification_service.notify(
            result.inviter_user_id,
            LedgerEventType.GRANT_TASK_REJECTED,
            {"task_id": task_id, "guest_name": result.guest.name, "comment": comment},
        )
        return result

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def list_tasks(self, filters: Optional[GrantTaskFilter] = None) -> GrantTaskListResponse:
        filters = filters or GrantTaskFilter()

        def work(session: Session) -> GrantTaskListResponse:
            repo = GrantTaskRepository(session)
            items, total = repo.list_tasks(filters)
            return GrantTaskListResponse(
                items=[to_task_response(repo, task) for task in items],
                total_count=total,
                limit=filters.limit,
                offset=filters.offset,
                has_next=filters.offset + filters.limit < total,
            )

        return self.executor.read_only(work)

    def get_my_tasks(
        self, user_id: UserId, filters: Optional[GrantTaskFilter] = None
    ) -> GrantTaskListResponse:
        filters = (filters or GrantTaskFilter()).model_copy(
            update={"inviter_user_id": user_id}
        )
        return self.list_tasks(filters)

    def get_task(self, task_id: GrantTaskId, actor: UserSchema) -> GrantTaskResponse:
        """태스크 상세 - 관리자 또는 초청자 본인"""

        def work(session: Session) -> GrantTaskResponse:
            repo = GrantTaskRepository(session)
            task = repo.require(task_id)
            if not actor.is_admin and task.inviter_user_id != actor.id:
                raise AuthorizationError(
                    "Access to this grant task is forbidden", {"task_id": task_id}
                )
            return to_task_response(repo, task, with_warnings=actor.is_admin)

        return self.executor.read_only(work)

    def get_stats(self) -> GrantTaskStatsResponse:
        now = datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        def work(session: Session) -> GrantTaskStatsResponse:
            repo = GrantTaskRepository(session)
            counts = repo.count_by_status()
            return GrantTaskStatsResponse(
                pending_count=counts.get(GrantTaskStatus.PENDING, 0),
                approved_count=counts.get(GrantTaskStatus.APPROVED, 0),
                rejected_count=counts.get(GrantTaskStatus.REJECTED, 0),
                total_granted=repo.sum_granted(),
                this_month_granted=repo.sum_granted(since=month_start),
            )

        return self.executor.read_only(work)

    @staticmethod
    def _require_admin(actor: UserSchema) -> None:
        if not actor.is_admin:
            raise AuthorizationError("Admin access required")
