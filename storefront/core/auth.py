# storefront/core/auth.py
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from storefront.core.config import Settings, get_settings
from storefront.core.errors import ForbiddenError, UnauthorizedError, ValidationError
from storefront.core.identity import Identity

# HTTP Bearer scheme:
# - auto_error=False => missing Authorization header will NOT raise immediately
#   so we can support "guest" mode (unauthenticated).
bearer_scheme = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, built from verified token claims."""

    id: uuid.UUID
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_access_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """
    Decode and verify an access token (JWT).

    Verification:
      - signature (JWT_ALG using JWT_SECRET)
      - expiration time (exp)
      - audience is NOT verified

    Raises:
        UnauthorizedError: if token is invalid/expired.
    """
    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser | None:
    """
    Resolve the caller from the bearer token.

    Flow:
      1. If no Authorization header => guest => return None.
      2. Decode JWT => extract 'sub' (user id) and 'role'.
      3. Convert 'sub' to UUID.

    Raises:
        UnauthorizedError: if token is malformed or missing 'sub'.
    """
    if credentials is None:
        return None  # guest mode

    payload = decode_access_token(credentials.credentials, request.app.state.settings)
    sub = payload.get("sub")
    if not sub:
        raise UnauthorizedError("Token missing sub")

    try:
        user_id = uuid.UUID(str(sub))
    except ValueError:
        raise UnauthorizedError("Invalid sub in token")

    return CurrentUser(id=user_id, role=payload.get("role") or "user")


def require_auth(user: CurrentUser | None = Depends(get_current_user)) -> CurrentUser:
    """
    Enforce authentication; guests are rejected with 401.
    """
    if user is None:
        raise UnauthorizedError("Authentication required")
    return user


def require_admin(user: CurrentUser = Depends(require_auth)) -> CurrentUser:
    """
    Enforce admin role; other callers are rejected with 403.
    """
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def get_identity(
    user: CurrentUser | None = Depends(get_current_user),
    session_id: str | None = Query(default=None, max_length=255),
) -> Identity:
    """
    Owner of the cart/order for this request.

    A valid bearer token wins; otherwise the guest `session_id` query
    parameter is used.
    """
    if user is not None:
        return Identity.for_user(user.id)
    if session_id:
        return Identity.for_guest(session_id)
    raise ValidationError("Either authentication or sessionId is required")
