"""원장 전용 값 타입

금액과 식별자를 일반 int/float 와 섞어 쓰지 않도록 별도 타입으로 둔다.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any, NewType

from pydantic import Field

from partnerledger.core.exceptions import ValidationError

UserId = NewType("UserId", int)
TransactionId = NewType("TransactionId", int)
GrantTaskId = NewType("GrantTaskId", int)

AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999999999.99")

# 요청 스키마용: 0보다 큰 소수 둘째 자리 금액
Amount = Annotated[
    Decimal, Field(gt=0, le=MAX_AMOUNT, max_digits=18, decimal_places=2)
]


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """임의 입력을 원장 금액으로 정규화 (양수, 소수 둘째 자리)"""
    if isinstance(value, float):
        # float 는 str 로 거쳐 이진 오차를 버린다
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}", {"field": field})

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be positive", {"field": field, "value": str(value)})
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large", {"field": field, "value": str(value)})
    if amount != amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP):
        raise ValidationError(
            f"{field} supports at most 2 decimal places", {"field": field, "value": str(value)}
        )
    return amount.quantize(AMOUNT_QUANTUM)


def as_decimal(value: Any) -> Decimal:
    """DB 에서 읽은 Numeric 값을 Decimal 로 (None 은 0)"""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(AMOUNT_QUANTUM)
