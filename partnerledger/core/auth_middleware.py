from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from partnerledger.containers import Container
from partnerledger.core.exceptions import AuthenticationError, AuthorizationError
from partnerledger.core.security import decode_access_token
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.repositories.user_repository import UserRepository
from partnerledger.schemas.user import User as UserSchema

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


@inject
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    executor: TransactionalExecutor = Depends(Provide[Container.repositories.executor]),
) -> UserSchema:
    """필수 사용자 인증 - 유효한 토큰이 필요함 (사용자 조회는 컨테이너의 실행기로)"""
    if not credentials:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(credentials.credentials)
    user = executor.read_only(lambda session: UserRepository(session).get_by_id(payload.user_id))
    if not user:
        raise AuthenticationError("Invalid or expired token")
    return user


def get_current_active_user(
    current_user: UserSchema = Depends(get_current_user),
) -> UserSchema:
    """활성 사용자만 허용"""
    if not current_user.is_active:
        raise AuthorizationError("Inactive user account")
    return current_user


def require_admin(
    current_user: UserSchema = Depends(get_current_active_user),
) -> UserSchema:
    """관리자 권한이 필요한 엔드포인트용 의존성"""
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")
    return current_user
