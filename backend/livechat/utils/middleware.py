"""
HTTP middleware for request tracing, timing and rate limiting.
WebSocket traffic passes through untouched.
"""
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid
import logging
from typing import Callable, Dict, List
from collections import defaultdict
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echoing the caller's when given."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        logger.debug(f"Request started: {request.method} {request.url.path} [{request_id}]")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Add request timing information."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.6f}"

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.2f}s"
            )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limit per client address.

    Health probes are never limited.
    """

    def __init__(self, app, calls: int = 100, period: int = 60):
        super().__init__(app)
        self.calls = calls
        self.period = period
        self.clients: Dict[str, List[datetime]] = defaultdict(list)

    def _get_client_id(self, request: Request) -> str:
        client = request.client
        return client.host if client else "unknown"

    def _is_rate_limited(self, client_id: str) -> bool:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.period)

        recent = [stamp for stamp in self.clients[client_id] if stamp > cutoff]
        self.clients[client_id] = recent

        if len(recent) >= self.calls:
            return True

        recent.append(now)
        return False

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith("/health"):
            return await call_next(request)

        client_id = self._get_client_id(request)

        if self._is_rate_limited(client_id):
            logger.warning(f"Rate limit exceeded for client: {client_id}")
            return Response(
                content="Rate limit exceeded. Please try again later.",
                status_code=429,
                headers={
                    "Retry-After": str(self.period),
                    "X-RateLimit-Limit": str(self.calls),
                    "X-RateLimit-Period": str(self.period)
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.calls)
        response.headers["X-RateLimit-Remaining"] = str(
            max(0, self.calls - len(self.clients[client_id]))
        )
        return response


__all__ = ['RequestIDMiddleware', 'TimingMiddleware', 'RateLimitMiddleware']
