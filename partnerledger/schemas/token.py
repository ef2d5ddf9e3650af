from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from partnerledger.core.types import Amount
from partnerledger.models.token import TransactionDirection, TransactionStatus


class BalanceResponse(BaseModel):
    """계정 잔액 응답"""

    user_id: int = Field(..., description="사용자 ID")
    balance: Decimal = Field(..., description="전체 잔액 (동결분 포함)")
    frozen: Decimal = Field(..., description="진행 중인 이체에 예약된 금액")
    available: Decimal = Field(..., description="사용 가능 금액")


class AccountResponse(BaseModel):
    """토큰 계정"""

    id: int
    user_id: int
    balance: Decimal
    frozen_amount: Decimal
    initial_amount: Decimal
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OpenAccountRequest(BaseModel):
    """계정 개설 요청 (온보딩)"""

    user_id: int = Field(..., gt=0, description="사용자 ID")
    initial_amount: Optional[Decimal] = Field(
        None, ge=0, max_digits=18, decimal_places=2, description="초기 지급액"
    )


class TokenTransactionResponse(BaseModel):
    """토큰 거래"""

    id: int
    from_user_id: Optional[int] = None
    to_user_id: Optional[int] = None
    amount: Decimal
    direction: TransactionDirection
    status: TransactionStatus
    reason: str
    admin_comment: Optional[str] = None
    admin_user_id: Optional[int] = None
    related_project_id: Optional[int] = None
    related_meeting_id: Optional[int] = None
    related_guest_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    """거래 목록 (페이징)"""

    items: List[TokenTransactionResponse] = Field(default_factory=list)
    total_count: int = Field(..., description="전체 항목 수")
    limit: int
    offset: int
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class TransactionHistoryFilter(BaseModel):
    """거래 내역 조회 조건"""

    direction: Optional[TransactionDirection] = None
    status: Optional[TransactionStatus] = None
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class CreateTransferRequest(BaseModel):
    """파트너 간 이체 요청"""

    to_user_id: int = Field(..., gt=0, description="받는 사용자 ID")
    amount: Amount = Field(..., description="이체 금액")
    reason: str = Field(..., min_length=1, max_length=500, description="이체 사유")
    related_project_id: Optional[int] = Field(None, description="관련 프로젝트 ID")


class ReviewTransferRequest(BaseModel):
    """관리자 이체 심사"""

    approve: bool
    comment: Optional[str] = Field(None, max_length=500)


class ConfirmTransferRequest(BaseModel):
    """수신자 이체 확인"""

    accept: bool
    comment: Optional[str] = Field(None, max_length=500)


class CancelTransferRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AdminGrantRequest(BaseModel):
    """관리자 지급"""

    user_id: int = Field(..., gt=0)
    amount: Amount
    reason: str = Field(..., min_length=1, max_length=500)


class AdminDeductRequest(BaseModel):
    """관리자 차감"""

    user_id: int = Field(..., gt=0)
    amount: Amount
    reason: str = Field(..., min_length=1, max_length=500)


class DividendDistribution(BaseModel):
    user_id: int = Field(..., gt=0)
    amount: Amount
    note: Optional[str] = Field(None, max_length=200)


class DividendRequest(BaseModel):
    """프로젝트 배당 - 전원 성공 또는 전원 실패"""

    project_id: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)
    distributions: List[DividendDistribution] = Field(..., min_length=1)


class DividendResponse(BaseModel):
    project_id: int
    total_amount: Decimal
    transactions: List[TokenTransactionResponse]


class TokenStatsResponse(BaseModel):
    """사용자 토큰 통계 (완료 거래 기준)"""

    user_id: int
    balance: Decimal
    frozen: Decimal
    available: Decimal
    total_received: Decimal = Field(..., description="이체로 받은 합계")
    total_sent: Decimal = Field(..., description="이체로 보낸 합계")
    total_granted: Decimal = Field(..., description="관리자 지급 합계")
    total_deducted: Decimal = Field(..., description="관리자 차감 합계")
    total_dividend: Decimal = Field(..., description="배당 합계")
    total_invite_reward: Decimal = Field(..., description="초청 보상 합계")
    net_change: Decimal = Field(..., description="초기 지급 이후 순변동")
    pending_outgoing_count: int = 0
    pending_incoming_count: int = 0


class AccountIntegrityResponse(BaseModel):
    """계정 정합성 검증 결과"""

    user_id: int
    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    stored_balance: Decimal
    computed_balance: Decimal
    stored_frozen: Decimal
    computed_frozen: Decimal
    completed_transactions: int
    pending_transfers: int


# ============================================================================
# 관리자 전체 조회
# ============================================================================


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class AccountSortField(str, Enum):
    BALANCE = "balance"
    INITIAL_AMOUNT = "initial_amount"
    CREATED_AT = "created_at"
    USER_NAME = "user_name"


class TransactionSortField(str, Enum):
    CREATED_AT = "created_at"
    AMOUNT = "amount"
    COMPLETED_AT = "completed_at"


class AccountOverviewFilter(BaseModel):
    """전체 계정 목록 조회 조건 (search 는 닉네임/이메일 부분 일치)"""

    search: Optional[str] = Field(None, max_length=100)
    sort_by: AccountSortField = AccountSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


class AccountOverviewItem(BaseModel):
    user_id: int
    user_name: str
    user_email: str
    role: str
    balance: Decimal
    frozen: Decimal
    available: Decimal
    initial_amount: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccountOverviewResponse(BaseModel):
    items: List[AccountOverviewItem] = Field(default_factory=list)
    total_count: int
    limit: int
    offset: int
    has_next: bool


class AdminTransactionFilter(TransactionHistoryFilter):
    """전체 거래 조회 조건"""

    sort_by: TransactionSortField = TransactionSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC


class GlobalStatsFilter(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    project_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class GlobalTokenStatsResponse(BaseModel):
    """전체 토큰 통계 - 잔액 합계는 현재 시점, 거래 합계는 조회 조건 기준"""

    account_count: int
    total_balance: Decimal
    total_frozen: Decimal
    total_initial_amount: Decimal
    total_granted: Decimal
    total_deducted: Decimal
    total_transferred: Decimal
    total_dividend: Decimal
    total_invite_reward: Decimal
    completed_transactions: int
    pending_transactions: int
    rejected_transactions: int


class ProjectTokenStats(BaseModel):
    project_id: int
    total_transferred: Decimal
    total_dividend: Decimal
    transaction_count: int
