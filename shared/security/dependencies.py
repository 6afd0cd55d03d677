from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from shared.errors import Forbidden, Unauthorized
from .jwt_handler import verify_access_token

ADMIN_ROLE = "ADMIN"

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


@dataclass(frozen=True)
class Principal:
    email: str
    role: str = "CUSTOMER"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> Principal:
    """Dependency to validate the bearer token and return the caller (sub = email)."""
    if not token:
        raise Unauthorized("Could not validate credentials")

    settings = request.app.state.settings
    payload = verify_access_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
    if payload is None:
        raise Unauthorized("Could not validate credentials")

    email = payload.get("sub")
    if not email:
        raise Unauthorized("Could not validate credentials")

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = email
    return Principal(email=email, role=payload.get("role") or "CUSTOMER")


async def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    """Dependency for admin-only routes: 401 without a token, 403 without the role."""
    if not principal.is_admin:
        raise Forbidden("Administrator role required")
    return principal
