"""FastAPI dependencies for session verification and authorization."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import Depends, Request

from src.api.cookies import ACCESS_COOKIE_NAME
from src.errors import ForbiddenError, UnauthenticatedError
from src.models.auth import DeviceInfo, Identity
from src.models.user import Role
from src.services.auth_service import AuthService


async def get_optional_identity(request: Request) -> Optional[Identity]:
    """Resolve the caller's identity from the access-token cookie.

    Never raises. A missing, expired, forged or malformed credential yields
    None rather than a partial identity.

    Args:
        request: Incoming request

    Returns:
        Identity or None
    """
    token = request.cookies.get(ACCESS_COOKIE_NAME)
    if not token:
        return None

    claims = AuthService().verify_access(token)
    if claims is None:
        return None

    try:
        user_id = UUID(claims.subject)
    except ValueError:
        return None

    structlog.contextvars.bind_contextvars(user_id=str(user_id))
    return Identity(
        user_id=user_id,
        role=claims.role,
        email=claims.email,
        name=claims.name,
    )


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    """Require an authenticated caller.

    Raises:
        UnauthenticatedError: If no valid access credential was presented
    """
    if identity is None:
        raise UnauthenticatedError("Invalid or missing access token")
    return identity


def require_role(*roles: Role):
    """Build a dependency that admits only callers holding one of ``roles``.

    Raises (from the built dependency):
        UnauthenticatedError: If there is no identity
        ForbiddenError: If the identity's role is not allowed
    """

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise ForbiddenError("Insufficient role for this operation")
        return identity

    return dependency


require_admin = require_role(Role.ADMIN)


def get_device_info(request: Request) -> DeviceInfo:
    """Client metadata recorded with each refresh record.

    The IP is the first X-Forwarded-For entry when present, otherwise the
    socket peer.
    """
    user_agent = request.headers.get("user-agent") or "unknown"

    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip()
    if not ip and request.client is not None:
        ip = request.client.host

    return DeviceInfo(user_agent=user_agent, ip=ip or "unknown")
