from dependency_injector import containers, providers

from partnerledger.config import Settings
from partnerledger.database.connection import build_engine, build_session_factory
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.services.grant_task_service import GrantTaskService
from partnerledger.services.ledger_service import LedgerService
from partnerledger.services.notification_service import NotificationService
from partnerledger.services.transfer_service import TransferService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class RepositoryModule(containers.DeclarativeContainer):
    """Database handles - 서비스에는 전역 클라이언트 대신 실행기를 주입"""

    config = providers.DependenciesContainer()

    engine = providers.Singleton(build_engine, config.config)
    session_factory = providers.Singleton(build_session_factory, bind=engine)
    executor = providers.Singleton(
        TransactionalExecutor, session_factory=session_factory, settings=config.config
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    repositories = providers.DependenciesContainer()

    notification_service = providers.Singleton(NotificationService, settings=config.config)
    ledger_service = providers.Factory(
        LedgerService,
        executor=repositories.executor,
        notification_service=notification_service,
        settings=config.config,
    )
    transfer_service = providers.Factory(
        TransferService,
        executor=repositories.executor,
        notification_service=notification_service,
    )
    grant_task_service = providers.Factory(
        GrantTaskService,
        executor=repositories.executor,
        notification_service=notification_service,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "partnerledger.core.auth_middleware",
            "partnerledger.routers.token_router",
            "partnerledger.routers.grant_task_router",
            "partnerledger.routers.health_router",
        ],
    )

    config = providers.Container(ConfigModule)
    repositories = providers.Container(RepositoryModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, repositories=repositories
    )
