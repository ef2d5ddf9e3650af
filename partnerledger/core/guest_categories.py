"""게스트 분류별 기본 지급액 테이블

관리자 심사 시 참고용 기본값이며, 실제 지급액은 심사에서 조정될 수 있습니다.
테이블에 없는 분류는 0으로 처리하고 경고만 남깁니다.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Tuple


class GuestCategory(str, Enum):
    PUBLIC_CO_DMHG = "PUBLIC_CO_DMHG"  # 상장사 이사/감사/고위 임원
    FIN_EXEC = "FIN_EXEC"  # 금융권 고위 임원
    PUBLIC_CHAIRMAN_CONTROLLER = "PUBLIC_CHAIRMAN_CONTROLLER"  # 상장사 회장/실소유주
    DEPT_LEADER = "DEPT_LEADER"  # 처급 공무원
    BUREAU_LEADER = "BUREAU_LEADER"  # 청급 공무원
    MINISTRY_LEADER = "MINISTRY_LEADER"  # 부처 장관급
    OTHER = "OTHER"


GUEST_CATEGORY_DEFAULT_AMOUNT: Dict[GuestCategory, Decimal] = {
    GuestCategory.PUBLIC_CO_DMHG: Decimal("500.00"),
    GuestCategory.FIN_EXEC: Decimal("500.00"),
    GuestCategory.PUBLIC_CHAIRMAN_CONTROLLER: Decimal("1000.00"),
    GuestCategory.DEPT_LEADER: Decimal("500.00"),
    GuestCategory.BUREAU_LEADER: Decimal("1000.00"),
    GuestCategory.MINISTRY_LEADER: Decimal("2000.00"),
    GuestCategory.OTHER: Decimal("0.00"),
}


def is_known_category(category: str) -> bool:
    return category in GuestCategory._value2member_map_


def default_amount_for(category: str) -> Tuple[Decimal, bool]:
    """분류의 기본 지급액과 알려진 분류인지 여부를 반환"""
    if not is_known_category(category):
        return Decimal("0.00"), False
    return GUEST_CATEGORY_DEFAULT_AMOUNT[GuestCategory(category)], True
