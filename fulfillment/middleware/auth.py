"""
Fulfillment Service — JWT Authentication Middleware
Validates Bearer token on all protected routes; returns 401 on failure.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError

from fulfillment.core.security import decode_token

# Paths that do NOT require authentication
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Unauthorized", "detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every request. Validates JWT Bearer token.
    Attaches decoded claims to request.state.user on success; role checks
    happen later, per operation, against those claims.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in PUBLIC_PATHS or request.url.path.startswith("/metrics"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header. Expected: Bearer <token>")

        token = auth_header.split(" ", 1)[1]
        try:
            claims = decode_token(token)
        except JWTError as exc:
            return _unauthorized(f"Invalid or expired JWT: {exc}")

        if not claims.get("sub"):
            return _unauthorized("Token carries no subject.")

        request.state.user = claims
        return await call_next(request)
