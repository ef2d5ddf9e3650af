"""
이체 상태 기계

    (생성)                    -> PENDING_ADMIN_APPROVAL
    PENDING_ADMIN_APPROVAL   -> PENDING_RECEIVER_CONFIRM  (관리자 승인)
    PENDING_ADMIN_APPROVAL   -> REJECTED                  (관리자 반려)
    PENDING_ADMIN_APPROVAL   -> CANCELLED                 (보낸 사람 취소)
    PENDING_RECEIVER_CONFIRM -> COMPLETED                 (받는 사람 수락)
    PENDING_RECEIVER_CONFIRM -> REJECTED                  (받는 사람 거절)

표에 없는 (상태, 동작) 조합은 InvalidStateTransitionError 입니다.
"""

from enum import Enum
from typing import Dict, Tuple

from partnerledger.core.exceptions import InvalidStateTransitionError
from partnerledger.models.token import TransactionStatus


class TransferAction(str, Enum):
    ADMIN_APPROVE = "ADMIN_APPROVE"
    ADMIN_REJECT = "ADMIN_REJECT"
    SENDER_CANCEL = "SENDER_CANCEL"
    RECEIVER_ACCEPT = "RECEIVER_ACCEPT"
    RECEIVER_DECLINE = "RECEIVER_DECLINE"


TRANSITIONS: Dict[Tuple[TransactionStatus, TransferAction], TransactionStatus] = {
    (
        TransactionStatus.PENDING_ADMIN_APPROVAL,
        TransferAction.ADMIN_APPROVE,
    ): TransactionStatus.PENDING_RECEIVER_CONFIRM,
    (
        TransactionStatus.PENDING_ADMIN_APPROVAL,
        TransferAction.ADMIN_REJECT,
    ): TransactionStatus.REJECTED,
    (
        TransactionStatus.PENDING_ADMIN_APPROVAL,
        TransferAction.SENDER_CANCEL,
    ): TransactionStatus.CANCELLED,
    (
        TransactionStatus.PENDING_RECEIVER_CONFIRM,
        TransferAction.RECEIVER_ACCEPT,
    ): TransactionStatus.COMPLETED,
    (
        TransactionStatus.PENDING_RECEIVER_CONFIRM,
        TransferAction.RECEIVER_DECLINE,
    ): TransactionStatus.REJECTED,
}

# 예약(frozen)이 걸려 있는 상태
RESERVED_STATUSES = frozenset(
    {
        TransactionStatus.PENDING_ADMIN_APPROVAL,
        TransactionStatus.PENDING_RECEIVER_CONFIRM,
    }
)


def next_status(current: TransactionStatus, action: TransferAction) -> TransactionStatus:
    try:
        return TRANSITIONS[(TransactionStatus(current), action)]
    except KeyError:
        raise InvalidStateTransitionError(
            current_state=TransactionStatus(current).value, action=action.value
        )


def is_terminal(status: TransactionStatus) -> bool:
    return TransactionStatus(status) not in RESERVED_STATUSES
