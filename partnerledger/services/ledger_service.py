"""
원장 직접 연산 서비스

관리자 지급/차감과 프로젝트 배당은 심사 없이 바로 COMPLETED 거래로 기록하고
같은 작업 단위에서 잔액에 반영합니다. 배당은 수령자 전원이 하나의 작업 단위라
한 명이라도 실패하면 해당 호출의 모든 입금이 롤백됩니다.

settle_credit() 는 세션을 받는 원시 연산으로, 지급 태스크 승인에서도 재사용합니다.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from partnerledger.config import Settings
from partnerledger.core.exceptions import AuthorizationError, ValidationError
from partnerledger.core.types import TransactionId, UserId, as_decimal, to_amount
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.models.audit import AuditAction, AuditObjectType, ProjectEventType
from partnerledger.models.token import (
    TokenTransaction,
    TransactionDirection,
    TransactionStatus,
)
from partnerledger.providers.queue.events import LedgerEventType
from partnerledger.repositories.account_repository import AccountRepository
from partnerledger.repositories.audit_repository import AuditRepository
from partnerledger.repositories.transaction_repository import (
    TransactionRepository,
    scope_conditions,
)
from partnerledger.schemas.audit import AuditLogResponse, ProjectEventResponse
from partnerledger.schemas.token import (
    AccountIntegrityResponse,
    AccountOverviewFilter,
    AccountOverviewItem,
    AccountOverviewResponse,
    AccountResponse,
    AdminTransactionFilter,
    BalanceResponse,
    DividendDistribution,
    DividendResponse,
    GlobalStatsFilter,
    GlobalTokenStatsResponse,
    ProjectTokenStats,
    TokenStatsResponse,
    TokenTransactionResponse,
    TransactionHistoryFilter,
    TransactionListResponse,
)
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def settle_credit(
    session: Session,
    *,
    to_user_id: int,
    amount: Decimal,
    direction: TransactionDirection,
    reason: str,
    admin_user_id: Optional[int] = None,
    admin_comment: Optional[str] = None,
    related_project_id: Optional[int] = None,
    related_meeting_id: Optional[int] = None,
    related_guest_id: Optional[int] = None,
) -> TokenTransaction:
    """시스템 입금 하나를 COMPLETED 거래로 기록하고 잔액에 반영 (호출자 트랜잭션 안에서)"""
    value = to_amount(amount)
    AccountRepository(session).credit(to_user_id, value)
    return TransactionRepository(session).create(
        to_user_id=to_user_id,
        amount=value,
        direction=direction,
        status=TransactionStatus.COMPLETED,
        reason=reason,
        admin_user_id=admin_user_id,
        admin_comment=admin_comment,
        related_project_id=related_project_id,
        related_meeting_id=related_meeting_id,
        related_guest_id=related_guest_id,
        completed_at=datetime.now(timezone.utc),
    )


class LedgerService:
    """잔액 조회와 관리자 원장 연산을 담당하는 서비스"""

    def __init__(
        self,
        executor: TransactionalExecutor,
        notification_service: NotificationService,
        settings: Settings,
    ):
        self.executor = executor
        self.notification_service = notification_service
        self.settings = settings

    # ------------------------------------------------------------------
    # 계정
    # ------------------------------------------------------------------

    def open_account(
        self, user_id: UserId, initial_amount: Optional[Decimal] = None
    ) -> AccountResponse:
        """온보딩 시 계정 개설 (사용자당 한 번)"""
        initial = as_decimal(
            self.settings.DEFAULT_INITIAL_AMOUNT
            if initial_amount is None
            else initial_amount
        )

        def work(session: Session) -> AccountResponse:
            account = AccountRepository(session).create_account(user_id, initial)
            return AccountResponse.model_validate(account)

        result = self.executor.run(work)
        logger.info(f"Opened token account for user {user_id} with {initial}")
        return result

    def get_balance(self, user_id: UserId) -> BalanceResponse:
        def work(session: Session) -> BalanceResponse:
            balance = AccountRepository(session).get_balance(user_id)
            return BalanceResponse(user_id=user_id, **balance)

        return self.executor.read_only(work)

    # ------------------------------------------------------------------
    # 관리자 연산
    # ------------------------------------------------------------------

    def admin_grant(
        self,
        admin: UserSchema,
        to_user_id: UserId,
        amount: Decimal,
        reason: str,
    ) -> TokenTransactionResponse:
        """관리자 지급 - 즉시 COMPLETED"""
        self._require_admin(admin)
        value = to_amount(amount)

        def work(session: Session) -> TokenTransactionResponse:
            tx = settle_credit(
                session,
                to_user_id=to_user_id,
                amount=value,
                direction=TransactionDirection.ADMIN_GRANT,
                reason=reason,
                admin_user_id=admin.id,
            )
            AuditRepository(session).record(
                user_id=admin.id,
                action=AuditAction.TOKEN_GRANT,
                object_type=AuditObjectType.TOKEN_TRANSACTION,
                object_id=tx.id,
                summary=f"Granted {value} tokens to user {to_user_id}",
                details={"to_user_id": to_user_id, "amount": str(value), "reason": reason},
            )
            return TokenTransactionResponse.model_validate(tx)

        result = self.executor.run_ledger(work)
        logger.info(f"Admin {admin.id} granted {value} to user {to_user_id}")

        self.notification_service.notify(
            to_user_id,
            LedgerEventType.ADMIN_GRANT,
            {"transaction_id": result.id, "amount": str(value), "reason": reason},
        )
        return result

    def admin_deduct(
        self,
        admin: UserSchema,
        from_user_id: UserId,
        amount: Decimal,
        reason: str,
    ) -> TokenTransactionResponse:
        """관리자 차감 - 가용 잔액을 넘으면 InsufficientFundsError"""
        self._require_admin(admin)
        value = to_amount(amount)

        def work(session: Session) -> TokenTransactionResponse:
            AccountRepository(session).debit(from_user_id, value)
            tx = TransactionRepository(session).create(
                from_user_id=from_user_id,
                amount=value,
                direction=TransactionDirection.ADMIN_DEDUCT,
                status=TransactionStatus.COMPLETED,
                reason=reason,
                admin_user_id=admin.id,
                completed_at=datetime.now(timezone.utc),
            )
            AuditRepository(session).record(
                user_id=admin.id,
                action=AuditAction.TOKEN_DEDUCT,
                object_type=AuditObjectType.TOKEN_TRANSACTION,
                object_id=tx.id,
                summary=f"Deducted {value} tokens from user {from_user_id}",
                details={"from_user_id": from_user_id, "amount": str(value), "reason": reason},
            )
            return TokenTransactionResponse.model_validate(tx)

        result = self.executor.run_ledger(work)
        logger.info(f"Admin {admin.id} deducted {value} from user {from_user_id}")

        self.notification_service.notify(
            from_user_id,
            LedgerEventType.ADMIN_DEDUCT,
            {"transaction_id": result.id, "amount": str(value), "reason": reason},
        )
        return result

    def distribute_dividend(
        self,
        admin: UserSchema,
        project_id: int,
        distributions: List[DividendDistribution],
        reason: str,
    ) -> DividendResponse:
        """프로젝트 배당 - 수령자 전원 입금 또는 전원 롤백"""
        self._require_admin(admin)
        if not distributions:
            raise ValidationError("At least one distribution is required")

        def work(session: Session) -> List[TokenTransactionResponse]:
            results = []
            for item in distributions:
                tx = settle_credit(
                    session,
                    to_user_id=item.user_id,
                    amount=item.amount,
                    direction=TransactionDirection.DIVIDEND,
                    reason=f"{reason} - {item.note}" if item.note else reason,
                    admin_user_id=admin.id,
                    related_project_id=project_id,
                )
                results.append(TokenTransactionResponse.model_validate(tx))

            total = sum((tx.amount for tx in results), Decimal("0.00"))
            audit = AuditRepository(session)
            audit.record(
                user_id=admin.id,
                action=AuditAction.TOKEN_DIVIDEND,
                object_type=AuditObjectType.PROJECT,
                object_id=project_id,
                summary=f"Distributed {total} tokens to {len(results)} recipient(s)",
                details={
                    "total_amount": str(total),
                    "transaction_ids": [tx.id for tx in results],
                    "reason": reason,
                },
            )
            audit.record_project_event(
                project_id=project_id,
                event_type=ProjectEventType.TOKEN_DIVIDEND_DISTRIBUTED,
                title="Project dividend distributed",
                description=f"Admin distributed a dividend of {total} tokens",
                payload={
                    "distributions": [
                        {"user_id": d.user_id, "amount": str(to_amount(d.amount)), "note": d.note}
                        for d in distributions
                    ],
                    "reason": reason,
                },
                created_by_id=admin.id,
            )
            return results

        transactions = self.executor.run_ledger(work)
        total = sum((tx.amount for tx in transactions), Decimal("0.00"))
        logger.info(
            f"Admin {admin.id} distributed dividend for project {project_id}: "
            f"{len(transactions)} recipients, total={total}"
        )

        for tx in transactions:
            self.notification_service.notify(
                tx.to_user_id,
                LedgerEventType.DIVIDEND_RECEIVED,
                {
                    "transaction_id": tx.id,
                    "project_id": project_id,
                    "amount": str(tx.amount),
                    "reason": tx.reason,
                },
            )
        return DividendResponse(
            project_id=project_id, total_amount=total, transactions=transactions
        )

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_transaction_history(
        self, user_id: UserId, filters: Optional[TransactionHistoryFilter] = None
    ) -> TransactionListResponse:
        filters = filters or TransactionHistoryFilter()
        limit = min(filters.limit, self.settings.HISTORY_PAGE_MAX)
        filters = filters.model_copy(update={"limit": limit})

        def work(session: Session) -> TransactionListResponse:
            items, total = TransactionRepository(session).list_for_user(user_id, filters)
            return TransactionListResponse(
                items=[TokenTransactionResponse.model_validate(tx) for tx in items],
                total_count=total,
                limit=filters.limit,
                offset=filters.offset,
                has_next=filters.offset + filters.limit < total,
            )

        return self.executor.read_only(work)

    def get_transaction(
        self, transaction_id: TransactionId, actor: UserSchema
    ) -> TokenTransactionResponse:
        """거래 상세 - 당사자 또는 관리자만"""

        def work(session: Session) -> TokenTransactionResponse:
            tx = TransactionRepository(session).require(transaction_id)
            if not actor.is_admin and actor.id not in (tx.from_user_id, tx.to_user_id):
                raise AuthorizationError(
                    "Not a party to this transaction",
                    {"transaction_id": transaction_id},
                )
            return TokenTransactionResponse.model_validate(tx)

        return self.executor.read_only(work)

    def get_token_stats(self, user_id: UserId) -> TokenStatsResponse:
        def work(session: Session) -> TokenStatsResponse:
            balance = AccountRepository(session).get_balance(user_id)
            txs = TransactionRepository(session)
            incoming = txs.sum_completed(user_id, incoming=True)
            outgoing = txs.sum_completed(user_id, incoming=False)
            pending_out, _ = txs.pending_outgoing(user_id)

            zero = Decimal("0.00")
            return TokenStatsResponse(
                user_id=user_id,
                balance=balance["balance"],
                frozen=balance["frozen"],
                available=balance["available"],
                total_received=incoming.get(TransactionDirection.TRANSFER, zero),
                total_sent=outgoing.get(TransactionDirection.TRANSFER, zero),
                total_granted=incoming.get(TransactionDirection.ADMIN_GRANT, zero),
                total_deducted=outgoing.get(TransactionDirection.ADMIN_DEDUCT, zero),
                total_dividend=incoming.get(TransactionDirection.DIVIDEND, zero),
                total_invite_reward=incoming.get(
                    TransactionDirection.MEETING_INVITE_REWARD, zero
                ),
                net_change=sum(incoming.values(), zero) - sum(outgoing.values(), zero),
                pending_outgoing_count=pending_out,
                pending_incoming_count=txs.count_pending_incoming(user_id),
            )

        return self.executor.read_only(work)

    def verify_account_integrity(self, user_id: UserId) -> AccountIntegrityResponse:
        """
        계정 정합성 검증

        검증 방식:
        1. initial_amount + 완료 입금 합계 - 완료 출금 합계 를 저장된 balance 와 비교
        2. 예약 상태 이체의 합계를 저장된 frozen_amount 와 비교
        둘 중 하나라도 다르면 MISMATCH
        """

        def work(session: Session) -> AccountIntegrityResponse:
            account = AccountRepository(session).require_account(user_id)
            txs = TransactionRepository(session)
            credits = sum(txs.sum_completed(user_id, incoming=True).values(), Decimal("0.00"))
            debits = sum(txs.sum_completed(user_id, incoming=False).values(), Decimal("0.00"))
            pending_count, pending_total = txs.pending_outgoing(user_id)

            stored_balance = as_decimal(account.balance)
            stored_frozen = as_decimal(account.frozen_amount)
            computed_balance = as_decimal(account.initial_amount) + credits - debits

            ok = stored_balance == computed_balance and stored_frozen == pending_total
            return AccountIntegrityResponse(
                user_id=user_id,
                status="OK" if ok else "MISMATCH",
                stored_balance=stored_balance,
                computed_balance=computed_balance,
                stored_frozen=stored_frozen,
                computed_frozen=pending_total,
                completed_transactions=txs.count_completed(user_id),
                pending_transfers=pending_count,
            )

        result = self.executor.read_only(work)
        if result.status != "OK":
            logger.warning(f"Account integrity mismatch for user {user_id}: {result}")
        return result

    # ------------------------------------------------------------------
    # 관리자 전체 조회 (읽기 전용)
    # ------------------------------------------------------------------

    def list_all_accounts(
        self, admin: UserSchema, filters: Optional[AccountOverviewFilter] = None
    ) -> AccountOverviewResponse:
        self._require_admin(admin)
        filters = filters or AccountOverviewFilter()

        def work(session: Session) -> AccountOverviewResponse:
            rows, total = AccountRepository(session).list_overview(filters)
            items = []
            for account, user in rows:
                balance = as_decimal(account.balance)
                frozen = as_decimal(account.frozen_amount)
                items.append(
                    AccountOverviewItem(
                        user_id=user.id,
                        user_name=user.nickname,
                        user_email=user.email,
                        role=user.role,
                        balance=balance,
                        frozen=frozen,
                        available=balance - frozen,
                        initial_amount=as_decimal(account.initial_amount),
                        created_at=account.created_at,
                        updated_at=account.updated_at,
                    )
                )
            return AccountOverviewResponse(
                items=items,
                total_count=total,
                limit=filters.limit,
                offset=filters.offset,
                has_next=filters.offset + filters.limit < total,
            )

        return self.executor.read_only(work)

    def get_global_stats(
        self, admin: UserSchema, filters: Optional[GlobalStatsFilter] = None
    ) -> GlobalTokenStatsResponse:
        """전체 통계 - 계정 합계는 현재 시점, 거래 합계/건수는 기간/프로젝트 조건 적용"""
        self._require_admin(admin)
        filters = filters or GlobalStatsFilter()

        def work(session: Session) -> GlobalTokenStatsResponse:
            totals = AccountRepository(session).totals()
            txs = TransactionRepository(session)
            scope = scope_conditions(filters.start_date, filters.end_date, filters.project_id)
            sums = txs.sum_completed_by_direction(scope)
            counts = txs.count_by_status(scope)

            zero = Decimal("0.00")
            return GlobalTokenStatsResponse(
                account_count=totals["account_count"],
                total_balance=totals["balance"],
                total_frozen=totals["frozen"],
                total_initial_amount=totals["initial_amount"],
                total_granted=sums.get(TransactionDirection.ADMIN_GRANT, zero),
                total_deducted=sums.get(TransactionDirection.ADMIN_DEDUCT, zero),
                total_transferred=sums.get(TransactionDirection.TRANSFER, zero),
                total_dividend=sums.get(TransactionDirection.DIVIDEND, zero),
                total_invite_reward=sums.get(TransactionDirection.MEETING_INVITE_REWARD, zero),
                completed_transactions=counts.get(TransactionStatus.COMPLETED, 0),
                pending_transactions=(
                    counts.get(TransactionStatus.PENDING_ADMIN_APPROVAL, 0)
                    + counts.get(TransactionStatus.PENDING_RECEIVER_CONFIRM, 0)
                ),
                rejected_transactions=counts.get(TransactionStatus.REJECTED, 0),
            )

        return self.executor.read_only(work)

    def get_project_stats(self, admin: UserSchema) -> List[ProjectTokenStats]:
        """프로젝트별 이체/배당 합계 (합계 큰 순)"""
        self._require_admin(admin)

        def work(session: Session) -> List[ProjectTokenStats]:
            return [
                ProjectTokenStats(
                    project_id=project_id,
                    total_transferred=transferred,
                    total_dividend=dividend,
                    transaction_count=count,
                )
                for project_id, transferred, dividend, count in TransactionRepository(
                    session
                ).project_totals()
            ]

        return self.executor.read_only(work)

    def list_all_transactions(
        self, admin: UserSchema, filters: Optional[AdminTransactionFilter] = None
    ) -> TransactionListResponse:
        self._require_admin(admin)
        filters = filters or AdminTransactionFilter()
        filters = filters.model_copy(
            update={"limit": min(filters.limit, self.settings.HISTORY_PAGE_MAX)}
        )

        def work(session: Session) -> TransactionListResponse:
            items, total = TransactionRepository(session).list_all(filters)
            return TransactionListResponse(
                items=[TokenTransactionResponse.model_validate(tx) for tx in items],
                total_count=total,
                limit=filters.limit,
                offset=filters.offset,
                has_next=filters.offset + filters.limit < total,
            )

        return self.executor.read_only(work)

    def get_audit_logs(
        self,
        admin: UserSchema,
        object_type: Optional[AuditObjectType] = None,
        object_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        limit: int = 50,
    ) -> List[AuditLogResponse]:
        self._require_admin(admin)

        def work(session: Session) -> List[AuditLogResponse]:
            logs = AuditRepository(session).list_logs(object_type, object_id, action, limit)
            return [AuditLogResponse.model_validate(log) for log in logs]

        return self.executor.read_only(work)

    def get_project_events(
        self, admin: UserSchema, project_id: int
    ) -> List[ProjectEventResponse]:
        """프로젝트 타임라인 (오래된 순)"""
        self._require_admin(admin)

        def work(session: Session) -> List[ProjectEventResponse]:
            events = AuditRepository(session).list_project_events(project_id)
            return [ProjectEventResponse.model_validate(event) for event in events]

        return self.executor.read_only(work)

    @staticmethod
    def _require_admin(actor: UserSchema) -> None:
        if not actor.is_admin:
            raise AuthorizationError("Admin access required")
