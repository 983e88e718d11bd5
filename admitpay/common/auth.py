"""Session-token verification and role checks for admin endpoints.

Admin sessions arrive as `Authorization: Bearer <jwt>` signed with the shared
session secret. Every protected handler goes through `authorize`.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from admitpay.common.config import settings

ALGORITHM = "HS256"
ADMIN_ROLES = frozenset({"admin", "superadmin"})
ROLE_ALIASES = {"super_admin": "superadmin"}


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str | None
    role: str | None


class AuthError(Exception):
    """Authentication or authorization failure with its HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def issue_session(
    user_id: str,
    email: str | None,
    role: str,
    ttl: timedelta = timedelta(hours=8),
    secret: str | None = None,
) -> str:
    """Sign a session token; used by operators and tests."""

    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(claims, secret or settings.session_secret, algorithm=ALGORITHM)


def decode_session(token: str, secret: str | None = None) -> SessionUser:
    """Verify signature and expiry, returning the session principal."""

    try:
        claims = jwt.decode(token, secret or settings.session_secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AuthError(401, "Unauthorized") from exc
    if not claims.get("sub"):
        raise AuthError(401, "Unauthorized")
    role = claims.get("role")
    return SessionUser(id=str(claims["sub"]), email=claims.get("email"), role=ROLE_ALIASES.get(role, role))


def authorize(authorization: str | None, required_roles=ADMIN_ROLES) -> SessionUser:
    """Resolve the caller from a bearer header and check its role."""

    if not authorization:
        raise AuthError(401, "Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(401, "Unauthorized")
    user = decode_session(token.strip())
    if user.role not in required_roles:
        raise AuthError(403, "Forbidden - Admin access required")
    return user
