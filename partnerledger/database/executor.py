"""
트랜잭션 실행기

원장을 건드리는 모든 다중 행 변경은 하나의 DB 트랜잭션 안에서 실행되어야 합니다.
실행기는 작업 단위(세션을 받는 함수)를 트랜잭션으로 감싸고:
1. 격리 수준과 실행 타임아웃을 설정
2. 성공 시 커밋, 어떤 예외든 전체 롤백
3. 직렬화 충돌/연결 끊김/타임아웃은 작업 단위 전체를 재시도 (attempt × base delay 대기)
4. 도메인 예외와 FATAL 장애는 재시도 없이 즉시 전파

잔액을 읽고 쓰는 작업은 run_ledger()로 SERIALIZABLE 격리에서 실행합니다.
동시 요청이 같은 계정을 건드리면 DB가 한쪽을 중단시키고, 재시도 시 최신 잔액으로
다시 검증하므로 갱신 손실이 발생하지 않습니다.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from partnerledger.config import Settings
from partnerledger.core.exceptions import RetryExhaustedError
from partnerledger.database.errors import (
    ConflictRetryable,
    StoreFailure,
    classify_store_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
UnitOfWork = Callable[[Session], T]


class IsolationLevel(str, Enum):
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True)
class TransactionOptions:
    isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    timeout_ms: int = 10000
    max_attempts: int = 3
    retry_base_delay_ms: int = 100


class TransactionalExecutor:
    """작업 단위를 트랜잭션으로 실행하고 재시도 정책을 적용"""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    @property
    def default_options(self) -> TransactionOptions:
        return TransactionOptions(
            isolation_level=IsolationLevel.READ_COMMITTED,
            timeout_ms=self.settings.TX_TIMEOUT_MS,
            max_attempts=self.settings.TX_MAX_ATTEMPTS,
            retry_base_delay_ms=self.settings.TX_RETRY_BASE_DELAY_MS,
        )

    @property
    def ledger_options(self) -> TransactionOptions:
        return TransactionOptions(
            isolation_level=IsolationLevel.SERIALIZABLE,
            timeout_ms=self.settings.TX_LEDGER_TIMEOUT_MS,
            max_attempts=self.settings.TX_MAX_ATTEMPTS,
            retry_base_delay_ms=self.settings.TX_RETRY_BASE_DELAY_MS,
        )

    def run(self, work: UnitOfWork[T], options: Optional[TransactionOptions] = None) -> T:
        """작업 단위를 트랜잭션으로 실행 (재시도 포함)

        Args:
            work: 트랜잭션 범위의 세션을 받는 함수
            options: 격리 수준/타임아웃/재시도 설정 (기본: READ COMMITTED, 10초)

        Returns:
            work의 반환값 (커밋 후)

        Raises:
            RetryExhaustedError: 재시도 가능한 장애가 시도 한도까지 계속된 경우
            그 외 work 가 던진 예외는 롤백 후 그대로 전파
        """
        opts = options or self.default_options
        last_failure = StoreFailure.FATAL

        for attempt in range(1, opts.max_attempts + 1):
            try:
                return self._run_once(work, opts)
            except ConflictRetryable as e:
                last_failure = e.failure
                if attempt >= opts.max_attempts:
                    break

                delay_ms = attempt * opts.retry_base_delay_ms
                logger.warning(
                    f"Retrying transaction after {e.failure.value} "
                    f"(attempt {attempt}/{opts.max_attempts}, backoff {delay_ms}ms)"
                )
                self._sleep(delay_ms / 1000)

        logger.error(
            f"Transaction retries exhausted after {opts.max_attempts} attempts: {last_failure.value}"
        )
        raise RetryExhaustedError(attempts=opts.max_attempts, last_failure=last_failure.value)

    def run_ledger(self, work: UnitOfWork[T]) -> T:
        """잔액을 읽고 쓰는 작업 단위 - SERIALIZABLE, 15초"""
        return self.run(work, self.ledger_options)

    def read_only(self, work: UnitOfWork[T]) -> T:
        """조회 전용 - 커밋/재시도 없이 세션만 제공"""
        session = self.session_factory()
        try:
            return work(session)
        finally:
            session.rollback()
            session.close()

    def _run_once(self, work: UnitOfWork[T], opts: TransactionOptions) -> T:
        session = self.session_factory()
        started = self._clock()
        try:
            self._configure(session, opts)
            result = work(session)
            session.flush()

            elapsed_ms = (self._clock() - started) * 1000
            if elapsed_ms > opts.timeout_ms:
                # 커밋 전에 한도를 넘긴 작업은 전부 되돌린다
                raise ConflictRetryable(StoreFailure.TIMEOUT)

            session.commit()
            logger.debug(f"Transaction committed ({opts.isolation_level.value}, {elapsed_ms:.0f}ms)")
            return result
        except ConflictRetryable:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            failure = classify_store_error(e)
            if failure.retryable:
                raise ConflictRetryable(failure, e) from e
            logger.error(f"Transaction rolled back on store error: {str(e)}")
            raise
        except Exception:
            session.rollback()
            logger.debug("Transaction rolled back")
            raise
        finally:
            session.close()

    def _configure(self, session: Session, opts: TransactionOptions) -> None:
        """트랜잭션 시작 전 격리 수준과 문장 타임아웃 적용 (PostgreSQL)"""
        bind = session.get_bind()
        if bind.dialect.name != "postgresql":
            return

        session.connection(
            execution_options={"isolation_level": opts.isolation_level.value}
        )
        session.execute(
            text("SELECT set_config('statement_timeout', :timeout, true)"),
            {"timeout": f"{opts.timeout_ms}ms"},
        )
