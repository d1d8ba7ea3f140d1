"""
Request logging for the cart service.

User ids arrive in ``X-User-ID`` and are only ever logged hashed.
"""
import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from agrocart.identifiers import hash_identifier

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

LATENCY_HEADER = "X-Response-Time-Ms"


def _request_fields(request: Request, hashed_user_id: Optional[str]) -> dict:
    return {
        "method": request.method,
        "path": request.url.path,
        "hashed_user_id": hashed_user_id,
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request and per response, with latency"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        user_id = request.headers.get("X-User-ID")
        fields = _request_fields(request, hash_identifier(user_id) if user_id else None)

        logger.info(
            f"{request.method} {request.url.path} received",
            extra={**fields, "client": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} raised {type(e).__name__}",
                extra={**fields, "error": str(e)},
                exc_info=True
            )
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {latency_ms:.1f}ms",
            extra={**fields, "status_code": response.status_code, "latency_ms": round(latency_ms, 2)},
        )
        response.headers[LATENCY_HEADER] = f"{latency_ms:.2f}"
        return response
