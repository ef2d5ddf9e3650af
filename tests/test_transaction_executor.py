from decimal import Decimal
from itertools import chain, repeat

import psycopg2
import pytest
from psycopg2 import errors as pg_errors
from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select

from partnerledger.core.exceptions import InsufficientFundsError, RetryExhaustedError
from partnerledger.database.errors import (
    ConflictRetryable,
    StoreFailure,
    classify_store_error,
)
from partnerledger.database.executor import (
    IsolationLevel,
    TransactionalExecutor,
)
from partnerledger.models.token import (
    TokenTransaction,
    TransactionDirection,
    TransactionStatus,
)

from tests.conftest import ALICE_ID


def serialization_failure():
    return sa_exc.OperationalError(
        "UPDATE token_accounts", {}, pg_errors.SerializationFailure("could not serialize access")
    )


def insert_grant(session, amount="10"):
    session.add(
        TokenTransaction(
            to_user_id=ALICE_ID,
            amount=Decimal(amount),
            direction=TransactionDirection.ADMIN_GRANT,
            status=TransactionStatus.COMPLETED,
            reason="executor test",
        )
    )
    session.flush()


def count_transactions(executor):
    return executor.read_only(
        lambda session: session.execute(select(func.count(TokenTransaction.id))).scalar_one()
    )


class TestClassifyStoreError:
    """드라이버 예외 -> StoreFailure 분류"""

    def test_serialization_failure(self):
        assert classify_store_error(serialization_failure()) == StoreFailure.SERIALIZATION_CONFLICT

    def test_deadlock(self):
        error = sa_exc.OperationalError("stmt", {}, pg_errors.DeadlockDetected("deadlock"))
        assert classify_store_error(error) == StoreFailure.DEADLOCK

    def test_statement_timeout(self):
        error = sa_exc.OperationalError("stmt", {}, pg_errors.QueryCanceled("canceling statement"))
        assert classify_store_error(error) == StoreFailure.TIMEOUT

    def test_connection_lost(self):
        error = sa_exc.OperationalError(
            "stmt", {}, psycopg2.OperationalError("server closed the connection")
        )
        assert classify_store_error(error) == StoreFailure.CONNECTION_LOST

    def test_pool_exhausted(self):
        assert classify_store_error(sa_exc.TimeoutError("QueuePool limit")) == StoreFailure.POOL_EXHAUSTED

    def test_integrity_error_is_fatal(self):
        error = sa_exc.IntegrityError("stmt", {}, Exception("unique violation"))
        assert classify_store_error(error) == StoreFailure.FATAL
        assert not StoreFailure.FATAL.retryable

    def test_retryable_passthrough(self):
        assert classify_store_error(ConflictRetryable(StoreFailure.DEADLOCK)) == StoreFailure.DEADLOCK


class TestTransactionalExecutor:
    """트랜잭션 실행기 테스트"""

    def test_commits_on_success(self, executor, seeded):
        # When
        result = executor.run(lambda session: insert_grant(session) or "done")

        # Then
        assert result == "done"
        assert count_transactions(executor) == 1

    def test_retries_serialization_conflict_with_linear_backoff(self, executor, seeded, sleeps):
        # Given: 처음 두 번은 직렬화 충돌
        attempts = []

        def work(session):
            attempts.append(1)
            insert_grant(session)
            if len(attempts) < 3:
                raise serialization_failure()
            return len(attempts)

        # When
        result = executor.run_ledger(work)

        # Then: 세 번째 시도에서 성공, 대기는 100ms, 200ms
        assert result == 3
        assert sleeps == [0.1, 0.2]
        assert count_transactions(executor) == 1

    def test_exhaustion_raises_and_rolls_back(self, executor, seeded, sleeps):
        # Given
        calls = []

        def work(session):
            calls.append(1)
            insert_grant(session)
            raise serialization_failure()

        # When
        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.run_ledger(work)

        # Then
        assert len(calls) == 3
        assert sleeps == [0.1, 0.2]
        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {
            "attempts": 3,
            "last_failure": StoreFailure.SERIALIZATION_CONFLICT.value,
        }
        assert count_transactions(executor) == 0

    def test_domain_error_is_not_retried(self, executor, seeded, sleeps):
        calls = []

        def work(session):
            calls.append(1)
            insert_grant(session)
            raise InsufficientFundsError()

        with pytest.raises(InsufficientFundsError):
            executor.run_ledger(work)

        assert len(calls) == 1
        assert sleeps == []
        assert count_transactions(executor) == 0

    def test_fatal_store_error_is_not_retried(self, executor, seeded, sleeps):
        calls = []

        def work(session):
            calls.append(1)
            raise sa_exc.IntegrityError("stmt", {}, Exception("check constraint"))

        with pytest.raises(sa_exc.IntegrityError):
            executor.run(work)

        assert len(calls) == 1
        assert sleeps == []

    def test_overrun_unit_is_rolled_back_and_retried(self, session_factory, test_settings, seeded):
        # Given: 첫 시도는 20초가 걸린 것으로 보이게 한다
        ticks = chain([0.0, 20.0], repeat(30.0))
        sleeps = []
        executor = TransactionalExecutor(
            session_factory, test_settings, sleep=sleeps.append, clock=lambda: next(ticks)
        )
        calls = []

        def work(session):
            calls.append(1)
            insert_grant(session)

        # When
        executor.run_ledger(work)

        # Then: 초과한 시도의 쓰기는 남지 않는다
        assert len(calls) == 2
        assert sleeps == [0.1]
        assert count_transactions(executor) == 1

    def test_persistent_overrun_exhausts_with_timeout(self, session_factory, test_settings, seeded):
        ticks = iter(range(0, 1000, 20))
        executor = TransactionalExecutor(
            session_factory, test_settings, sleep=lambda _: None, clock=lambda: next(ticks)
        )

        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.run(insert_grant)

        assert exc_info.value.details["last_failure"] == StoreFailure.TIMEOUT.value
        assert count_transactions(executor) == 0

    def test_option_presets(self, executor):
        assert executor.default_options.isolation_level == IsolationLevel.READ_COMMITTED
        assert executor.default_options.timeout_ms == 10000
        assert executor.ledger_options.isolation_level == IsolationLevel.SERIALIZABLE
        assert executor.ledger_options.timeout_ms == 15000
        assert executor.ledger_options.max_attempts == 3
