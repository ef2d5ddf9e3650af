"""
토큰 원장 API 라우터

사용자용 엔드포인트:
- GET  /tokens/balance: 내 잔액
- GET  /tokens/stats: 내 토큰 통계
- GET  /tokens/transactions: 내 거래 내역 (필터/페이징)
- GET  /tokens/transactions/{id}: 거래 상세 (당사자만)
- POST /tokens/transfers: 이체 신청
- GET  /tokens/transfers/pending-confirm: 내가 확인할 이체
- POST /tokens/transfers/{id}/confirm: 받는 사람 수락/거절
- POST /tokens/transfers/{id}/cancel: 보낸 사람 취소

관리자용 엔드포인트:
- POST /tokens/admin/accounts: 계정 개설
- GET  /tokens/admin/transfers/pending: 심사 대기 이체
- POST /tokens/admin/transfers/{id}/review: 이체 심사
- POST /tokens/admin/grant | /deduct | /dividends: 직접 원장 연산
- GET  /tokens/admin/balance/{user_id}, /transactions/{user_id}, /integrity/{user_id}
- GET  /tokens/admin/accounts, /admin/transactions: 전체 계정/거래 목록
- GET  /tokens/admin/stats, /admin/stats/projects: 전체/프로젝트별 통계
- GET  /tokens/admin/audit-logs, /admin/projects/{project_id}/events: 감사 로그, 프로젝트 타임라인
"""

import logging
from datetime import date
from typing import List, Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query, status

from partnerledger.containers import Container
from partnerledger.core.auth_middleware import get_current_active_user, require_admin
from partnerledger.core.exceptions import ValidationError
from partnerledger.models.audit import AuditAction, AuditObjectType
from partnerledger.models.token import TransactionDirection, TransactionStatus
from partnerledger.schemas.audit import AuditLogResponse, ProjectEventResponse
from partnerledger.schemas.token import (
    AccountIntegrityResponse,
    AccountOverviewFilter,
    AccountOverviewResponse,
    AccountResponse,
    AccountSortField,
    AdminDeductRequest,
    AdminGrantRequest,
    AdminTransactionFilter,
    BalanceResponse,
    CancelTransferRequest,
    ConfirmTransferRequest,
    CreateTransferRequest,
    DividendRequest,
    DividendResponse,
    GlobalStatsFilter,
    GlobalTokenStatsResponse,
    OpenAccountRequest,
    ProjectTokenStats,
    ReviewTransferRequest,
    SortOrder,
    TokenStatsResponse,
    TokenTransactionResponse,
    TransactionHistoryFilter,
    TransactionListResponse,
    TransactionSortField,
)
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.ledger_service import LedgerService
from partnerledger.services.transfer_service import TransferService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


def _check_date_range(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValidationError(
            "start_date must not be after end_date",
            {"start_date": str(start_date), "end_date": str(end_date)},
        )


def history_filter(
    direction: Optional[TransactionDirection] = Query(None),
    status: Optional[TransactionStatus] = Query(None),
    project_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> TransactionHistoryFilter:
    _check_date_range(start_date, end_date)
    return TransactionHistoryFilter(
        direction=direction,
        status=status,
        project_id=project_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


def account_overview_filter(
    search: Optional[str] = Query(None, max_length=100),
    sort_by: AccountSortField = Query(AccountSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> AccountOverviewFilter:
    return AccountOverviewFilter(
        search=search, sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
    )


def admin_transaction_filter(
    filters: TransactionHistoryFilter = Depends(history_filter),
    sort_by: TransactionSortField = Query(TransactionSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
) -> AdminTransactionFilter:
    return AdminTransactionFilter(
        **filters.model_dump(), sort_by=sort_by, sort_order=sort_order
    )


def global_stats_filter(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    project_id: Optional[int] = Query(None),
) -> GlobalStatsFilter:
    _check_date_range(start_date, end_date)
    return GlobalStatsFilter(start_date=start_date, end_date=end_date, project_id=project_id)


# ============================================================================
# 사용자
# ============================================================================


@router.get("/balance", response_model=BalanceResponse)
@inject
def get_my_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> BalanceResponse:
    """내 잔액 - balance / frozen / available"""
    return ledger_service.get_balance(current_user.id)


@router.get("/stats", response_model=TokenStatsResponse)
@inject
def get_my_stats(
    current_user: UserSchema = Depends(get_current_active_user),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TokenStatsResponse:
    return ledger_service.get_token_stats(current_user.id)


@router.get("/transactions", response_model=TransactionListResponse)
@inject
def get_my_transactions(
    filters: TransactionHistoryFilter = Depends(history_filter),
    current_user: UserSchema = Depends(get_current_active_user),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TransactionListResponse:
    return ledger_service.get_transaction_history(current_user.id, filters)


@router.get("/transactions/{transaction_id}", response_model=TokenTransactionResponse)
@inject
def get_transaction(
    transaction_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TokenTransactionResponse:
    return ledger_service.get_transaction(transaction_id, current_user)


@router.post(
    "/transfers",
    response_model=TokenTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def create_transfer(
    request: CreateTransferRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> TokenTransactionResponse:
    """이체 신청 - 금액은 관리자 심사/받는 사람 확인까지 예약된다"""
    return transfer_service.create_transfer(current_user, request)


@router.get("/transfers/pending-confirm", response_model=List[TokenTransactionResponse])
@inject
def list_my_pending_confirmations(
    current_user: UserSchema = Depends(get_current_active_user),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> List[TokenTransactionResponse]:
    return transfer_service.list_pending_confirmations(current_user.id)


@router.post("/transfers/{transfer_id}/confirm", response_model=TokenTransactionResponse)
@inject
def confirm_transfer(
    request: ConfirmTransferRequest,
    transfer_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> TokenTransactionResponse:
    return transfer_service.confirm_transfer(
        transfer_id, current_user, request.accept, request.comment
    )


@router.post("/transfers/{transfer_id}/cancel", response_model=TokenTransactionResponse)
@inject
def cancel_transfer(
    request: CancelTransferRequest,
    transfer_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> TokenTransactionResponse:
    return transfer_service.cancel_transfer(transfer_id, current_user, request.reason)


# ============================================================================
# 관리자
# ============================================================================


@router.post(
    "/admin/accounts",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def open_account(
    request: OpenAccountRequest,
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> AccountResponse:
    logger.info(f"Admin {current_user.id} opening account for user {request.user_id}")
    return ledger_service.open_account(request.user_id, request.initial_amount)


@router.get("/admin/transfers/pending", response_model=List[TokenTransactionResponse])
@inject
def list_pending_transfers(
    current_user: UserSchema = Depends(require_admin),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> List[TokenTransactionResponse]:
    return transfer_service.list_pending_transfers()


@router.post(
    "/admin/transfers/{transfer_id}/review", response_model=TokenTransactionResponse
)
@inject
def review_transfer(
    request: ReviewTransferRequest,
    transfer_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    transfer_service: TransferService = Depends(
        Provide[Container.services.transfer_service]
    ),
) -> TokenTransactionResponse:
    return transfer_service.review_transfer(
        transfer_id, current_user, request.approve, request.comment
    )


@router.post(
    "/admin/grant",
    response_model=TokenTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def admin_grant(
    request: AdminGrantRequest,
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TokenTransactionResponse:
    return ledger_service.admin_grant(
        current_user, request.user_id, request.amount, request.reason
    )


@router.post(
    "/admin/deduct",
    response_model=TokenTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def admin_deduct(
    request: AdminDeductRequest,
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TokenTransactionResponse:
    return ledger_service.admin_deduct(
        current_user, request.user_id, request.amount, request.reason
    )


@router.post(
    "/admin/dividends",
    response_model=DividendResponse,
    status_code=status.HTTP_201_CREATED,
)
@inject
def distribute_dividend(
    request: DividendRequest,
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> DividendResponse:
    """프로젝트 배당 - 한 명이라도 실패하면 전체 롤백"""
    return ledger_service.distribute_dividend(
        current_user, request.project_id, request.distributions, request.reason
    )


@router.get("/admin/balance/{user_id}", response_model=BalanceResponse)
@inject
def get_user_balance(
    user_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> BalanceResponse:
    return ledger_service.get_balance(user_id)


@router.get("/admin/transactions/{user_id}", response_model=TransactionListResponse)
@inject
def get_user_transactions(
    user_id: int = Path(..., gt=0),
    filters: TransactionHistoryFilter = Depends(history_filter),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TransactionListResponse:
    return ledger_service.get_transaction_history(user_id, filters)


@router.get("/admin/integrity/{user_id}", response_model=AccountIntegrityResponse)
@inject
def verify_user_integrity(
    user_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> AccountIntegrityResponse:
    return ledger_service.verify_account_integrity(user_id)


@router.get("/admin/accounts", response_model=AccountOverviewResponse)
@inject
def list_all_accounts(
    filters: AccountOverviewFilter = Depends(account_overview_filter),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> AccountOverviewResponse:
    return ledger_service.list_all_accounts(current_user, filters)


@router.get("/admin/transactions", response_model=TransactionListResponse)
@inject
def list_all_transactions(
    filters: AdminTransactionFilter = Depends(admin_transaction_filter),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> TransactionListResponse:
    return ledger_service.list_all_transactions(current_user, filters)


@router.get("/admin/stats", response_model=GlobalTokenStatsResponse)
@inject
def get_global_stats(
    filters: GlobalStatsFilter = Depends(global_stats_filter),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> GlobalTokenStatsResponse:
    return ledger_service.get_global_stats(current_user, filters)


@router.get("/admin/stats/projects", response_model=List[ProjectTokenStats])
@inject
def get_project_stats(
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> List[ProjectTokenStats]:
    return ledger_service.get_project_stats(current_user)


@router.get("/admin/audit-logs", response_model=List[AuditLogResponse])
@inject
def get_audit_logs(
    object_type: Optional[AuditObjectType] = Query(None),
    object_id: Optional[int] = Query(None, gt=0),
    action: Optional[AuditAction] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> List[AuditLogResponse]:
    return ledger_service.get_audit_logs(current_user, object_type, object_id, action, limit)


@router.get(
    "/admin/projects/{project_id}/events", response_model=List[ProjectEventResponse]
)
@inject
def get_project_events(
    project_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(require_admin),
    ledger_service: LedgerService = Depends(Provide[Container.services.ledger_service]),
) -> List[ProjectEventResponse]:
    return ledger_service.get_project_events(current_user, project_id)
