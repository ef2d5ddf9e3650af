import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from partnerledger import containers
from partnerledger.config import settings
from partnerledger.core.exception_handlers import register_exception_handlers
from partnerledger.core.logging_middleware import LoggingMiddleware
from partnerledger.logging_config import setup_logging
from partnerledger.routers import grant_task_router, health_router, token_router

load_dotenv("partnerledger/.env")
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router.router)
    app.include_router(token_router.router, prefix=settings.API_V1_STR)
    app.include_router(grant_task_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
