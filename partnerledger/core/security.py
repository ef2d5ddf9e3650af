from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from partnerledger.config import settings
from partnerledger.core.exceptions import AuthenticationError
from partnerledger.schemas.user import TokenPayload


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """테스트/내부 호출용 토큰 발급 (사용자 로그인은 외부 인증 서비스 소관)"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """JWT 를 검증하고 페이로드를 반환"""
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, PydanticValidationError):
        raise AuthenticationError("Invalid authentication credentials")
