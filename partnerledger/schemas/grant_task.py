from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from partnerledger.models.grant_task import GrantTaskSource, GrantTaskStatus
from partnerledger.schemas.token import TokenTransactionResponse


# ---------------------------------------------------------------------------
# 입력 이벤트
# ---------------------------------------------------------------------------


class MeetingGuest(BaseModel):
    """종료된 회의의 외부 게스트"""

    guest_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=100)
    organization: str = Field("", max_length=200)
    title: str = Field("", max_length=100)
    guest_category: str = Field(..., min_length=1, max_length=50)
    invited_by_user_id: Optional[int] = Field(None, description="초청한 파트너")


class MeetingFinishedEvent(BaseModel):
    meeting_id: int = Field(..., gt=0)
    topic: str = Field(..., min_length=1)
    guests: List[MeetingGuest] = Field(default_factory=list)


class VisitLoggedEvent(BaseModel):
    """현장 방문 기록 (초청자 = 기록한 파트너)"""

    visit_id: int = Field(..., gt=0)
    guest_name: str = Field(..., min_length=1, max_length=100)
    organization: str = Field("", max_length=200)
    title: str = Field("", max_length=100)
    guest_category: str = Field(..., min_length=1, max_length=50)
    visit_date: date


class MeetingFinishedResult(BaseModel):
    meeting_id: int
    created_task_ids: List[int] = Field(default_factory=list)
    skipped_existing_guest_ids: List[int] = Field(default_factory=list)
    incomplete_guest_ids: List[int] = Field(
        default_factory=list, description="초청자 정보가 없어 건너뛴 게스트"
    )


# ---------------------------------------------------------------------------
# 태스크 출처 (kind 로 구분되는 태그드 유니언)
# ---------------------------------------------------------------------------


class MeetingGuestSource(BaseModel):
    kind: Literal["MEETING_GUEST"] = "MEETING_GUEST"
    guest_id: int
    meeting_id: int
    meeting_topic: str


class OnsiteVisitSource(BaseModel):
    kind: Literal["ONSITE_VISIT"] = "ONSITE_VISIT"
    visit_id: int
    visit_date: date


GrantTaskSourceDetail = Annotated[
    Union[MeetingGuestSource, OnsiteVisitSource], Field(discriminator="kind")
]


class GuestSnapshot(BaseModel):
    name: str
    organization: str = ""
    title: str = ""
    category: str


class GrantTaskWarningCode(str, Enum):
    SAME_PERSON = "SAME_PERSON"  # 같은 이름+소속으로 승인된 태스크 존재
    SAME_ORG = "SAME_ORG"  # 같은 소속의 다른 사람이 승인된 적 있음
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    ZERO_DEFAULT_AMOUNT = "ZERO_DEFAULT_AMOUNT"


class GrantTaskWarning(BaseModel):
    code: GrantTaskWarningCode
    message: str
    related_task_ids: List[int] = Field(default_factory=list)


class GrantTaskResponse(BaseModel):
    id: int
    status: GrantTaskStatus
    source: GrantTaskSourceDetail
    inviter_user_id: int
    guest: GuestSnapshot
    default_amount: Decimal
    final_amount: Optional[Decimal] = None
    admin_user_id: Optional[int] = None
    admin_comment: Optional[str] = None
    decided_at: Optional[datetime] = None
    token_transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None
    warnings: List[GrantTaskWarning] = Field(default_factory=list)


class GrantTaskListResponse(BaseModel):
    items: List[GrantTaskResponse] = Field(default_factory=list)
    total_count: int
    limit: int
    offset: int
    has_next: bool


class GrantTaskFilter(BaseModel):
    status: Optional[GrantTaskStatus] = None
    task_source: Optional[GrantTaskSource] = None
    inviter_user_id: Optional[int] = None
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# 심사
# ---------------------------------------------------------------------------


class ApproveGrantTaskRequest(BaseModel):
    amount_override: Optional[Decimal] = Field(
        None, ge=0, max_digits=18, decimal_places=2, description="지급액 조정"
    )
    comment: Optional[str] = Field(None, max_length=500)


class RejectGrantTaskRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class GrantTaskApprovalResponse(BaseModel):
    task: GrantTaskResponse
    transaction: TokenTransactionResponse


class GrantTaskStatsResponse(BaseModel):
    pending_count: int
    approved_count: int
    rejected_count: int
    total_granted: Decimal
    this_month_granted: Decimal
