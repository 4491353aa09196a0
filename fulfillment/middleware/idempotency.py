"""
Fulfillment Service — Idempotency Key Middleware

Client-supplied Idempotency-Key on order placement and payment submission,
cached in Redis per caller:
  - Cache hit   → return cached response immediately (no business logic)
  - In flight   → 409 until the first request finishes
  - Cache miss  → execute handler, store response for IDEMPOTENCY_KEY_TTL_SECONDS

5xx responses are not cached so a retry after a server fault re-runs.
"""
import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fulfillment.core.config import get_settings
from fulfillment.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "idempotent:"
IDEMPOTENCY_METHODS = {"POST"}
IDEMPOTENCY_PATHS = {"/orders", "/orders/", "/payments", "/payments/"}
IN_FLIGHT_TTL_SECONDS = 30


def cache_key_for(user_id: str, path: str, idem_key: str) -> str:
    return f"{IDEMPOTENCY_PREFIX}{user_id}:{path.rstrip('/')}:{idem_key}"


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Must run inside JWTAuthMiddleware: keys are scoped to the caller's
    ``sub`` so two users can never replay each other's responses.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if not settings.IDEMPOTENCY_ENABLED:
            return await call_next(request)

        if request.method not in IDEMPOTENCY_METHODS or request.url.path not in IDEMPOTENCY_PATHS:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        claims = getattr(request.state, "user", None)
        if not idem_key or not claims:
            return await call_next(request)

        redis = get_redis()
        cache_key = cache_key_for(str(claims.get("sub")), request.url.path, idem_key)
        lock_key = f"{cache_key}:lock"

        # Cache HIT → replay stored response
        cached = await redis.get(cache_key)
        if cached:
            logger.info("Replaying stored response for %s", cache_key)
            data = json.loads(cached)
            return JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
                headers={"X-Idempotency-Replay": "true"},
            )

        if not await redis.set(lock_key, "1", nx=True, ex=IN_FLIGHT_TTL_SECONDS):
            return JSONResponse(
                status_code=409,
                content={
                    "error": "ConcurrencyConflict",
                    "detail": "A request with this Idempotency-Key is still being processed.",
                },
            )

        try:
            response = await call_next(request)

            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk

            if response.status_code < 500:
                try:
                    body = json.loads(body_bytes)
                except ValueError:
                    body = body_bytes.decode("utf-8", errors="replace")
                await redis.setex(
                    cache_key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"body": body, "status_code": response.status_code}),
                )
        finally:
            await redis.delete(lock_key)

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
