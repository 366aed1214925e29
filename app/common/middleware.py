"""
Middleware HTTP comunes
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import uuid4
import logging
import time

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Asigna un X-Request-ID a cada request (o respeta el recibido) y registra
    método, ruta, status y duración.
    """

    # Paths que no se registran
    EXEMPT_PATHS = ["/health"]

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Request-ID"] = request_id

        if request.url.path not in self.EXEMPT_PATHS:
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({elapsed_ms:.1f} ms) [{request_id}]"
            )

        return response
