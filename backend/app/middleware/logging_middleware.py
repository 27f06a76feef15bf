"""请求日志中间件"""
import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("api.request")

SKIP_PATHS: tuple[str, ...] = ("/health", "/api/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """按状态码分级记录请求耗时"""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"
        should_log = not any(path.startswith(p) for p in SKIP_PATHS)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error("%s %s - ERROR - %.2fms - %s - %s", method, path, duration_ms, client_ip, e)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        if should_log:
            status_code = response.status_code
            if status_code >= 500:
                level = logging.ERROR
            elif status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logger.log(level, "%s %s - %s - %.2fms - %s", method, path, status_code, duration_ms, client_ip)

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """记录未处理的异常后继续抛出"""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception("Unhandled exception: %s %s - %s", request.method, request.url.path, e)
            raise
