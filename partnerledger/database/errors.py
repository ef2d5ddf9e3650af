"""저장소 장애 분류

드라이버 예외를 닫힌 열거형 StoreFailure 로 분류한다. 재시도 여부는
분류 결과만 보고 결정하며 에러 코드 문자열은 비교하지 않는다.
"""

from enum import Enum
from typing import Optional

import psycopg2
from psycopg2 import errors as pg_errors
from sqlalchemy import exc as sa_exc


class StoreFailure(str, Enum):
    SERIALIZATION_CONFLICT = "SERIALIZATION_CONFLICT"
    DEADLOCK = "DEADLOCK"
    CONNECTION_LOST = "CONNECTION_LOST"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    TIMEOUT = "TIMEOUT"
    FATAL = "FATAL"

    @property
    def retryable(self) -> bool:
        return self is not StoreFailure.FATAL


class ConflictRetryable(Exception):
    """재시도 가능한 저장소 장애 - 실행기 밖으로 나가지 않는다"""

    def __init__(self, failure: StoreFailure, cause: Optional[BaseException] = None):
        self.failure = failure
        self.cause = cause
        super().__init__(f"{failure.value}: {cause}" if cause else failure.value)


def classify_store_error(exc: BaseException) -> StoreFailure:
    """SQLAlchemy/psycopg2 예외를 StoreFailure 로 분류"""
    if isinstance(exc, ConflictRetryable):
        return exc.failure

    # 풀에서 커넥션을 제때 얻지 못함
    if isinstance(exc, sa_exc.TimeoutError):
        return StoreFailure.POOL_EXHAUSTED

    if isinstance(exc, sa_exc.DisconnectionError):
        return StoreFailure.CONNECTION_LOST

    if isinstance(exc, sa_exc.DBAPIError):
        if exc.connection_invalidated:
            return StoreFailure.CONNECTION_LOST

        orig = exc.orig
        if isinstance(orig, pg_errors.SerializationFailure):
            return StoreFailure.SERIALIZATION_CONFLICT
        if isinstance(orig, pg_errors.DeadlockDetected):
            return StoreFailure.DEADLOCK
        if isinstance(orig, (pg_errors.QueryCanceled, pg_errors.LockNotAvailable)):
            return StoreFailure.TIMEOUT
        if isinstance(orig, (psycopg2.InterfaceError, pg_errors.AdminShutdown)):
            return StoreFailure.CONNECTION_LOST
        # 연결 끊김은 SQLSTATE 없이 기본 OperationalError 로 올라온다
        if type(orig) is psycopg2.OperationalError:
            return StoreFailure.CONNECTION_LOST

    return StoreFailure.FATAL
