"""
이체 서비스 - 2단계 승인 이체 프로토콜

1. 생성: 보낸 사람 계정에 금액을 예약(frozen)하고 PENDING_ADMIN_APPROVAL 거래를 기록
2. 관리자 심사: 승인 -> PENDING_RECEIVER_CONFIRM, 반려 -> REJECTED (예약 해제)
3. 받는 사람 확인: 수락 -> COMPLETED (예약 해제 + 출금 + 입금), 거절 -> REJECTED (예약 해제)
4. 보낸 사람 취소: 관리자 심사 전에만 가능 -> CANCELLED (예약 해제)

각 단계는 하나의 SERIALIZABLE 작업 단위로 실행되며, 잔액 반영은 COMPLETED 전이에서
정확히 한 번만 일어납니다. 알림은 커밋 이후에 발행합니다.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from partnerledger.core.exceptions import AuthorizationError, ValidationError
from partnerledger.core.types import TransactionId, UserId, to_amount
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
from partnerledger.repositories.transaction_repository import TransactionRepository
from partnerledger.repositories.user_repository import UserRepository
from partnerledger.schemas.token import CreateTransferRequest, TokenTransactionResponse
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.notification_service import NotificationService
from partnerledger.services.transfer_state import TransferAction, next_status

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_payload(tx: TokenTransactionResponse, **extra) -> dict:
    payload = {
        "transaction_id": tx.id,
        "from_user_id": tx.from_user_id,
        "to_user_id": tx.to_user_id,
        "amount": str(tx.amount),
        "reason": tx.reason,
    }
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


class TransferService:
    """파트너 간 이체 상태 전이를 담당하는 서비스"""

    def __init__(
        self, executor: TransactionalExecutor, notification_service: NotificationService
    ):
        self.executor = executor
        self.notification_service = notification_service

    def create_transfer(
        self, sender: UserSchema, request: CreateTransferRequest
    ) -> TokenTransactionResponse:
        """이체 신청 - 보낸 사람 가용 잔액에서 금액을 예약

        Raises:
            ValidationError: 자기 자신에게 이체
            NotFoundError: 보낸 사람/받는 사람 계정 없음
            InsufficientFundsError: 가용 잔액 부족
        """
        if request.to_user_id == sender.id:
            raise ValidationError("Cannot transfer to yourself", {"user_id": sender.id})

        amount = to_amount(request.amount)

        def work(session: Session):
            accounts = AccountRepository(session)
            accounts.require_account(request.to_user_id)
            accounts.reserve(sender.id, amount)

            tx = TransactionRepository(session).create(
                from_user_id=sender.id,
                to_user_id=request.to_user_id,
                amount=amount,
                direction=TransactionDirection.TRANSFER,
                status=TransactionStatus.PENDING_ADMIN_APPROVAL,
                reason=request.reason,
                related_project_id=request.related_project_id,
            )
            admin_ids = UserRepository(session).get_admin_ids()
            return TokenTransactionResponse.model_validate(tx), admin_ids

        result, admin_ids = self.executor.run_ledger(work)
        logger.info(
            f"Transfer {result.id} created: {sender.id} -> {request.to_user_id}, amount={amount}"
        )

        self.notification_service.notify_many(
            admin_ids, LedgerEventType.TRANSFER_PENDING_APPROVAL, _event_payload(result)
        )
        return result

    def review_transfer(
        self,
        transfer_id: TransactionId,
        actor: UserSchema,
        approve: bool,
        comment: Optional[str] = None,
    ) -> TokenTransactionResponse:
        """관리자 심사 - 승인 시 받는 사람 확인 대기, 반려 시 예약 해제"""
        if not actor.is_admin:
            raise AuthorizationError("Admin access required to review transfers")

        action = TransferAction.ADMIN_APPROVE if approve else TransferAction.ADMIN_REJECT

        def work(session: Session) -> TokenTransactionResponse:
            tx = TransactionRepository(session).lock_transaction(transfer_id)
            new_status = next_status(tx.status, action)

            if new_status == TransactionStatus.REJECTED:
                AccountRepository(session).release(tx.from_user_id, tx.amount)
                tx.completed_at = _utcnow()

            tx.status = new_status
            tx.admin_user_id = actor.id
            tx.admin_comment = comment
            session.flush()
            return TokenTransactionResponse.model_validate(tx)

        result = self.executor.run_ledger(work)
        logger.info(
            f"Transfer {transfer_id} reviewed by admin {actor.id}: {result.status.value}"
        )

        if result.status == TransactionStatus.PENDING_RECEIVER_CONFIRM:
            self.notification_service.notify(
                result.to_user_id,
                LedgerEventType.TRANSFER_PENDING_CONFIRM,
                _event_payload(result),
            )
        else:
            self.notification_service.notify(
                result.from_user_id,
                LedgerEventType.TRANSFER_REJECTED,
                _event_payload(result, comment=comment),
            )
        return result

    def confirm_transfer(
        self,
        transfer_id: TransactionId,
        actor: UserSchema,
        accept: bool,
        comment: Optional[str] = None,
    ) -> TokenTransactionResponse:
        """받는 사람 확인 - 수락 시 정산, 거절 시 예약 해제"""
        action = (
            TransferAction.RECEIVER_ACCEPT if accept else TransferAction.RECEIVER_DECLINE
        )

        def work(session: Session) -> TokenTransactionResponse:
            tx = TransactionRepository(session).lock_transaction(transfer_id)
            if tx.to_user_id != actor.id:
                raise AuthorizationError(
                    "Only the receiver can confirm this transfer",
                    {"transaction_id": transfer_id},
                )
            new_status = next_status(tx.status, action)

            accounts = AccountRepository(session)
            accounts.release(tx.from_user_id, tx.amount)
            if new_status == TransactionStatus.COMPLETED:
                accounts.debit(tx.from_user_id, tx.amount)
                accounts.credit(tx.to_user_id, tx.amount)

            tx.status = new_status
            tx.completed_at = _utcnow()
            session.flush()
            if new_status == TransactionStatus.COMPLETED:
                self._record_completion(session, tx, actor)
            return TokenTransactionResponse.model_validate(tx)

        result = self.executor.run_ledger(work)
        logger.info(
            f"Transfer {transfer_id} confirmed by receiver {actor.id}: {result.status.value}"
        )

        event_type = (
            LedgerEventType.TRANSFER_COMPLETED
            if result.status == TransactionStatus.COMPLETED
            else LedgerEventType.TRANSFER_DECLINED
        )
        self.notification_service.notify(
            result.from_user_id, event_type, _event_payload(result, comment=comment)
        )
        return result

    def cancel_transfer(
        self, transfer_id: TransactionId, actor: UserSchema, reason: Optional[str] = None
    ) -> TokenTransactionResponse:
        """보낸 사람 취소 - 관리자 심사 전에만 가능"""

        def work(session: Session) -> TokenTransactionResponse:
            tx = TransactionRepository(session).lock_transaction(transfer_id)
            if tx.from_user_id != actor.id:
                raise AuthorizationError(
                    "Only the sender can cancel this transfer",
                    {"transaction_id": transfer_id},
                )
            new_status = next_status(tx.status, TransferAction.SENDER_CANCEL)

            AccountRepository(session).release(tx.from_user_id, tx.amount)
            tx.status = new_status
            tx.completed_at = _utcnow()
            tx.admin_comment = f"[cancelled] {reason}" if reason else None
            session.flush()
            return TokenTransactionResponse.model_validate(tx)

        result = self.executor.run_ledger(work)
        logger.info(f"Transfer {transfer_id} cancelled by sender {actor.id}")

        self.notification_service.notify(
            result.to_user_id,
            LedgerEventType.TRANSFER_CANCELLED,
            _event_payload(result, cancel_reason=reason),
        )
        return result

    def list_pending_transfers(self) -> List[TokenTransactionResponse]:
        """관리자 심사 대기열"""
        return self._list(TransactionStatus.PENDING_ADMIN_APPROVAL)

    def list_pending_confirmations(self, user_id: UserId) -> List[TokenTransactionResponse]:
        """받는 사람 확인 대기열"""
        return self._list(TransactionStatus.PENDING_RECEIVER_CONFIRM, to_user_id=user_id)

    def _list(
        self, status: TransactionStatus, to_user_id: Optional[int] = None
    ) -> List[TokenTransactionResponse]:
        def work(session: Session) -> List[TokenTransactionResponse]:
            rows: List[TokenTransaction] = TransactionRepository(session).list_by_status(
                status, to_user_id=to_user_id
            )
            return [TokenTransactionResponse.model_validate(tx) for tx in rows]

        return self.executor.read_only(work)

    @staticmethod
    def _record_completion(session: Session, tx: TokenTransaction, actor: UserSchema) -> None:
        """완료된 이체의 감사 로그, 프로젝트 연결 이체면 타임라인 항목까지"""
        amount = str(tx.amount)
        payload = {
            "transaction_id": tx.id,
            "from_user_id": tx.from_user_id,
            "to_user_id": tx.to_user_id,
            "amount": amount,
            "reason": tx.reason,
        }
        audit = AuditRepository(session)
        audit.record(
            user_id=actor.id,
            action=AuditAction.TOKEN_TRANSFER,
            object_type=AuditObjectType.TOKEN_TRANSACTION,
            object_id=tx.id,
            summary=f"Transfer of {amount} tokens from user {tx.from_user_id} to user {tx.to_user_id} completed",
            details=payload,
        )
        if tx.related_project_id is not None:
            audit.record_project_event(
                project_id=tx.related_project_id,
                event_type=ProjectEventType.TOKEN_TRANSFER_COMPLETED,
                title="Token transfer completed",
                description=f"User {tx.from_user_id} transferred {amount} tokens to user {tx.to_user_id}",
                payload=payload,
                created_by_id=actor.id,
            )
