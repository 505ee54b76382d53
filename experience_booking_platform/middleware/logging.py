"""
Access logging with a request ID that follows the request into every log line.
"""

import contextvars
import logging
import time
from typing import Dict, Iterable, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")

SLOW_REQUEST_SECONDS = 2.0

QUIET_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}

MASKED_HEADERS = ("authorization", "cookie", "x-api-key")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID and log what came in and what went out."""

    def __init__(
        self,
        app,
        log_requests: bool = True,
        log_responses: bool = True,
        masked_headers: Optional[Iterable[str]] = None
    ):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.masked_headers = {h.lower() for h in (masked_headers or MASKED_HEADERS)}

    async def dispatch(self, request: Request, call_next):
        # Reuse the caller's ID when a proxy already assigned one
        request_id = request.headers.get("x-request-id") or uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()

        try:
            if self.log_requests:
                self._log_request(request)

            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    f"Unhandled error serving {request.method} {request.url.path}",
                    extra={"elapsed": time.perf_counter() - started},
                )
                raise

            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{elapsed:.4f}"

            if self.log_responses:
                self._log_response(request, response, elapsed)
            return response
        finally:
            request_id_var.reset(token)

    def _log_request(self, request: Request) -> None:
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path}",
            extra={
                "query_params": dict(request.query_params),
                "client_ip": client_ip(request),
                "headers": self._masked(request.headers.items()),
            },
        )

    def _log_response(self, request: Request, response: Response, elapsed: float) -> None:
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        logger.log(
            level,
            f"{request.method} {request.url.path} -> {status} ({elapsed:.4f}s)",
            extra={"status_code": status, "elapsed": elapsed},
        )

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {elapsed:.2f}s")

    def _masked(self, headers: Iterable) -> Dict[str, str]:
        return {
            name: "***MASKED***" if name.lower() in self.masked_headers else value
            for name, value in headers
        }


def client_ip(request: Request) -> str:
    """Originating client address, looking through X-Forwarded-For."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
