import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from partnerledger.logging_config import trace_id_var

logger = logging.getLogger("partnerledger")

TRACE_ID_HEADER = "X-Trace-Id"


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청/응답 로그와 trace_id 전파

    클라이언트가 보낸 X-Trace-Id 를 그대로 쓰고, 없으면 새로 발급해 응답 헤더로 돌려준다.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = request.headers.get(TRACE_ID_HEADER) or uuid.uuid4().hex
        token = trace_id_var.set(trace_id)
        request.state.trace_id = trace_id
        try:
            return await self._log_exchange(request, call_next, trace_id)
        finally:
            trace_id_var.reset(token)

    async def _log_exchange(
        self, request: Request, call_next: RequestResponseEndpoint, trace_id: str
    ) -> Response:
        start = time.perf_counter()
        client = request.client.host if request.client else "-"
        route = f"{request.method} {request.url.path}"
        logger.info(f"[Request] {route} from {client}")

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[Unhandled Error] {route} from {client}")
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers[TRACE_ID_HEADER] = trace_id

        level = logging.INFO
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        logger.log(level, f"[Response] {route} -> {response.status_code} in {elapsed_ms:.1f}ms")
        return response
