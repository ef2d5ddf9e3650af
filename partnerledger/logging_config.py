import logging
import logging.config
import sys
from contextvars import ContextVar

# 요청 단위 추적 ID (LoggingMiddleware 가 설정, 요청 밖에서는 "-")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


class TraceIdFilter(logging.Filter):
    """모든 레코드에 현재 요청의 trace_id 를 붙인다"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = trace_id_var.get()
        return True


def setup_logging(log_level: str = "INFO"):
    log_level = log_level.upper()
    app_handlers = ["console", "error_console"]

    LOGGING_CONFIG = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "trace_id": {"()": TraceIdFilter},
        },
        "formatters": {
            "detailed": {
                "format": (
                    "%(asctime)s | %(levelname)-8s | %(name)s | trace=%(trace_id)s\n"
                    "%(pathname)s:%(lineno)d\n%(message)s"
                ),
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-20s | %(trace_id)s | %(message)s",
            },
        },
        "handlers": {
            "console": {
                "formatter": "simple",
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "filters": ["trace_id"],
            },
            "error_console": {
                "formatter": "detailed",
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": "WARNING",
                "filters": ["trace_id"],
            },
        },
        "loggers": {
            "": {
                "handlers": app_handlers,
                "level": log_level,
            },
            "uvicorn.error": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            # 원장/실행기/라우터 로거는 모두 이 아래 (partnerledger.*)
            "partnerledger": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": False,
            },
            # SQL 로그는 DEBUG 설정 시 엔진 echo로만 출력
            "sqlalchemy.engine": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }
    logging.config.dictConfig(LOGGING_CONFIG)
