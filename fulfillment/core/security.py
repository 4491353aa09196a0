"""
Fulfillment Service — JWT decoding and role-based permissions

Tokens are issued by the identity provider and share its secret. The claims
this service relies on are ``sub`` (user id) and ``role``.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from fastapi import Request
from jose import jwt

from fulfillment.core.config import get_settings
from fulfillment.core.errors import Forbidden

settings = get_settings()


class Role(str, Enum):
    USER = "USER"
    KITCHEN = "KITCHEN"
    ADMIN = "ADMIN"


class Permission(str, Enum):
    PLACE_ORDER = "orders:create"
    PAY_ORDER = "payments:create"
    READ_ANY_ORDER = "orders:read_any"
    ADVANCE_ORDER = "orders:advance"
    CANCEL_ORDER = "orders:cancel"
    VIEW_KITCHEN_QUEUE = "kitchen:read"
    MANAGE_PRODUCTS = "products:manage"
    MANAGE_STOCK = "stock:manage"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.USER: frozenset({
        Permission.PLACE_ORDER,
        Permission.PAY_ORDER,
    }),
    # Staff accounts run the floor; ordering and paying is for customers
    Role.KITCHEN: frozenset({
        Permission.ADVANCE_ORDER,
        Permission.VIEW_KITCHEN_QUEUE,
    }),
    Role.ADMIN: frozenset(Permission) - {Permission.PLACE_ORDER, Permission.PAY_ORDER},
}
if set(ROLE_PERMISSIONS) != set(Role):
    raise RuntimeError(f"Roles without a permission set: {set(Role) - set(ROLE_PERMISSIONS)}")


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role

    def can(self, permission: Permission) -> bool:
        return permission in ROLE_PERMISSIONS[self.role]

    def require(self, permission: Permission) -> None:
        if not self.can(permission):
            raise Forbidden(
                f"Role {self.role.value} is not allowed to perform '{permission.value}'.",
                permission=permission.value,
            )


# ─── JWT ───────────────────────────────────────────────────────────────────────

def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def create_access_token(user_id: str, role: Role | str, expires_minutes: int | None = None) -> str:
    """Mint a token the way the identity provider does (local tooling and tests)."""
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        "sub": user_id,
        "role": Role(role).value,
        "exp": expire,
        "type": "access",
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    user_id = claims.get("sub")
    if not user_id:
        raise Forbidden("Token carries no subject.")
    try:
        role = Role(str(claims.get("role", "")).upper())
    except ValueError:
        raise Forbidden(f"Unknown role '{claims.get('role')}'.")
    return Principal(user_id=str(user_id), role=role)


def get_principal(request: Request) -> Principal:
    """FastAPI dependency: the caller as established by JWTAuthMiddleware."""
    claims = getattr(request.state, "user", None)
    if claims is None:
        raise Forbidden("Request is not authenticated.")
    return principal_from_claims(claims)
