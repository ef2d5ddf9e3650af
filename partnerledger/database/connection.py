from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from partnerledger.config import Settings, settings


def build_engine(app_settings: Settings) -> Engine:
    url = app_settings.database_url

    if url.startswith("sqlite"):
        # 로컬/테스트용
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=app_settings.DEBUG,
        )

    return create_engine(
        url,
        pool_size=app_settings.DB_POOL_SIZE,
        max_overflow=app_settings.DB_MAX_OVERFLOW,
        pool_timeout=app_settings.TX_MAX_WAIT_MS / 1000,  # 커넥션 획득 대기 한도
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=app_settings.DEBUG,  # 디버그 모드에서 SQL 로깅
        connect_args={"options": f"-csearch_path={app_settings.POSTGRES_SCHEMA}"},
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    # Use expire_on_commit=False to avoid DetachedInstanceError when accessing
    # attributes after commit within the same request scope (common FastAPI pattern).
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        expire_on_commit=False,
    )


engine = build_engine(settings)
