import logging
from datetime import datetime, timezone

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from partnerledger.config import Settings
from partnerledger.containers import Container
from partnerledger.database.executor import TransactionalExecutor
from partnerledger.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheckResponse)
@inject
def health_check(
    executor: TransactionalExecutor = Depends(Provide[Container.repositories.executor]),
    settings: Settings = Depends(Provide[Container.config.config]),
) -> HealthCheckResponse:
    """저장소에 읽기 전용 작업 단위 하나를 실행해 본다 (재시도 없이 실패 보고)"""
    checked_at = datetime.now(timezone.utc)
    try:
        executor.read_only(lambda session: session.execute(text("SELECT 1")).scalar())
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {str(e)}")
        return HealthCheckResponse(
            status="degraded",
            database="unavailable",
            environment=settings.ENVIRONMENT,
            checked_at=checked_at,
            error=str(e),
        )
    return HealthCheckResponse(environment=settings.ENVIRONMENT, checked_at=checked_at)
