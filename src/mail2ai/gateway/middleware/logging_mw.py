"""LoggingMiddleware -- 请求级日志

每个请求绑定 request_id 到 structlog contextvars：调用方通过 X-Request-ID
传入时沿用（便于与入队方日志关联），否则生成 ULID。
探活路径只记 debug；5xx 记为 error；未处理异常记录 request_failed 后继续抛出。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64
PROBE_PATHS = frozenset({"/health", "/ready"})


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH and incoming.isprintable():
        return incoming
    return str(ULID())


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _request_id(request)
        path = request.url.path
        started = time.monotonic()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )
        log = structlog.get_logger()
        probe = path in PROBE_PATHS

        if not probe:
            await log.ainfo("request_started")

        try:
            response = await call_next(request)
        except Exception as e:
            await log.aerror(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        if response.status_code >= 500:
            await log.aerror(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )
        elif probe:
            await log.adebug(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )
        else:
            await log.ainfo(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
