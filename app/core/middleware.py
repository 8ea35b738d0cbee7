"""Request throttling and request logging middleware."""

import logging
import time
from uuid import uuid4

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Gateway deliveries must never be throttled: a 429 there turns into retries
UNTHROTTLED_PREFIXES = (f"{settings.api_prefix}/webhooks",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client fixed-window limit on write requests.

    Reads are never limited. Every write (booking creation, order opening,
    verification) counts against a one-minute window kept in Redis, so the
    limit holds across workers.
    """

    window_seconds = 60

    def __init__(
        self,
        app,
        requests_per_minute: int = 100,
        redis_url: str | None = None,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.redis_url = redis_url or settings.redis_url
        self._redis: redis.Redis | None = None

    def get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def client_key(request: Request) -> str:
        """Bearer token when present, else the caller's address."""
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            return f"token:{authorization[7:][-32:]}"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.method not in WRITE_METHODS or request.url.path.startswith(UNTHROTTLED_PREFIXES):
            return await call_next(request)

        window = int(time.time()) // self.window_seconds
        key = f"write_limit:{self.client_key(request)}:{window}"
        try:
            async with self.get_redis().pipeline(transaction=True) as pipe:
                await pipe.incr(key)
                await pipe.expire(key, self.window_seconds)
                count, _ = await pipe.execute()
        except redis.RedisError as e:
            # Fail open; bookings must not stop because Redis is down
            logger.warning(f"Rate limiter unavailable: {e}")
            return await call_next(request)

        remaining = self.requests_per_minute - count
        if remaining < 0:
            retry_after = self.window_seconds - int(time.time()) % self.window_seconds
            logger.warning(f"Write limit hit for {request.method} {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later.", "retry_after": retry_after},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Stamps every response with a request id and its duration."""

    slow_request_seconds = 1.0

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id

        response = await call_next(request)
        duration = time.perf_counter() - started

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        if duration > self.slow_request_seconds:
            logger.warning(
                f"Slow request {request_id}: {request.method} {request.url.path} "
                f"took {duration:.3f}s"
            )
        else:
            logger.debug(
                f"{request.method} {request.url.path} -> {response.status_code} ({duration:.3f}s)"
            )
        return response
