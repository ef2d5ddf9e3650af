"""
API 예외 핸들러

모든 오류 응답은 같은 봉투를 쓴다:
{"success": false, "error": {"code", "message", "details"}, "trace_id": "..."}
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .exceptions import BaseAPIException, InternalServerError

logger = logging.getLogger("partnerledger")


def _describe(request: Request) -> str:
    client = request.client.host if request.client else "-"
    return f"{request.method} {request.url.path} from {client}"


def _error_response(
    request: Request,
    status_code: int,
    error: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content = {
        "success": False,
        "error": error,
        "trace_id": getattr(request.state, "trace_id", None),
    }
    # pydantic 에러 컨텍스트에 Decimal/예외 객체가 섞일 수 있음
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(content, custom_encoder={Exception: str}),
        headers=headers,
    )


def _log_by_status(status_code: int, message: str) -> None:
    if status_code >= 500:
        logger.error(message)
    else:
        logger.warning(message)


async def handle_base_api_exception(request: Request, exc: BaseAPIException):
    _log_by_status(
        exc.status_code,
        f"[{type(exc).__name__}] {_describe(request)} -> {exc.status_code} "
        f"{exc.error_code}: {exc.message}",
    )
    return _error_response(request, exc.status_code, exc.detail["error"])


async def handle_http_exception(request: Request, exc: HTTPException):
    _log_by_status(
        exc.status_code, f"[HTTPException] {_describe(request)} -> {exc.status_code}: {exc.detail}"
    )

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        error = exc.detail["error"]
    else:
        error = {"code": "HTTP_ERROR", "message": str(exc.detail), "details": {}}
    return _error_response(request, exc.status_code, error, headers=exc.headers)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    logger.warning(f"[ValidationError] {_describe(request)} -> 422: {exc.errors()}")
    return _error_response(
        request,
        422,
        {
            "code": "VALIDATION_001",
            "message": "Validation failed",
            "details": {"errors": exc.errors()},
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"[Unhandled Error] {_describe(request)}\n"
        f"{type(exc).__name__}: {str(exc)}\n\n{tb_str}"
    )
    internal = InternalServerError()
    return _error_response(request, internal.status_code, internal.detail["error"])


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
