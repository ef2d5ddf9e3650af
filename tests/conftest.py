from decimal import Decimal
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from partnerledger.config import Settings
from partnerledger.core.auth_middleware import get_current_user
from partnerledger.database.connection import build_session_factory
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.main import create_app
from partnerledger.models import Base, TokenAccount, User, UserRole
from partnerledger.schemas.user import User as UserSchema
from partnerledger.services.grant_task_service import GrantTaskService
from partnerledger.services.ledger_service import LedgerService
from partnerledger.services.notification_service import NotificationService
from partnerledger.services.transfer_service import TransferService

ADMIN_ID = 1
ALICE_ID = 2
BOB_ID = 3
CAROL_ID = 4


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path}/ledger.db",
        SQS_NOTIFICATION_QUEUE=None,
        SECRET_KEY="test-secret-key",
    )


@pytest.fixture
def engine(test_settings):
    # 파일 기반 SQLite: 세션마다 별도 커넥션이라 동시 요청을 흉내낼 수 있다
    engine = create_engine(
        test_settings.database_url, connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def sleeps():
    """실행기가 요청한 대기 시간(초) 기록"""
    return []


@pytest.fixture
def executor(session_factory, test_settings, sleeps):
    return TransactionalExecutor(session_factory, test_settings, sleep=sleeps.append)


@pytest.fixture
def notifier():
    return Mock(spec=NotificationService)


@pytest.fixture
def seeded(session_factory):
    """관리자 1명 + 파트너 3명, 파트너 계정 alice 1000 / bob 500 / carol 0"""
    session = session_factory()
    try:
        session.add_all(
            [
                User(id=ADMIN_ID, email="admin@example.com", nickname="admin", role=UserRole.ADMIN.value),
                User(id=ALICE_ID, email="alice@example.com", nickname="alice"),
                User(id=BOB_ID, email="bob@example.com", nickname="bob"),
                User(id=CAROL_ID, email="carol@example.com", nickname="carol"),
            ]
        )
        session.flush()
        for user_id, amount in ((ALICE_ID, "1000"), (BOB_ID, "500"), (CAROL_ID, "0")):
            session.add(
                TokenAccount(
                    user_id=user_id,
                    balance=Decimal(amount),
                    frozen_amount=Decimal("0"),
                    initial_amount=Decimal(amount),
                )
            )
        session.commit()
        return {
            user.id: UserSchema.model_validate(user)
            for user in session.query(User).all()
        }
    finally:
        session.close()


@pytest.fixture
def admin(seeded):
    return seeded[ADMIN_ID]


@pytest.fixture
def alice(seeded):
    return seeded[ALICE_ID]


@pytest.fixture
def bob(seeded):
    return seeded[BOB_ID]


@pytest.fixture
def carol(seeded):
    return seeded[CAROL_ID]


@pytest.fixture
def ledger_service(executor, notifier, test_settings):
    return LedgerService(executor, notifier, test_settings)


@pytest.fixture
def transfer_service(executor, notifier):
    return TransferService(executor, notifier)


@pytest.fixture
def grant_task_service(executor, notifier):
    return GrantTaskService(executor, notifier)


@pytest.fixture
def balance_of(ledger_service):
    """(balance, frozen, available) 튜플 조회 헬퍼"""

    def _balance_of(user_id):
        result = ledger_service.get_balance(user_id)
        return result.balance, result.frozen, result.available

    return _balance_of


@pytest.fixture
def app(executor, notifier):
    """테스트 DB 실행기와 모의 알림을 주입한 앱"""
    app = create_app()
    container = app.container  # type: ignore
    container.repositories.executor.override(executor)
    container.services.notification_service.override(notifier)

    yield app

    container.repositories.executor.reset_override()
    container.services.notification_service.reset_override()
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login_as(app):
    """인증 의존성을 고정 사용자로 대체 (활성/관리자 검사는 그대로 동작)"""

    def _login_as(user):
        app.dependency_overrides[get_current_user] = lambda: user

    return _login_as
