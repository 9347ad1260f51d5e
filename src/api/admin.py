"""Admin API endpoints for session management."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import require_admin
from src.models.auth import Identity, RevokedSessionsResponse
from src.services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/users/{user_id}/sessions/revoke")
async def revoke_user_sessions(
    user_id: UUID,
    admin: Identity = Depends(require_admin),
) -> RevokedSessionsResponse:
    """Revoke every active refresh token of a user (admin only).

    Access tokens already issued stay valid until they expire.

    Returns:
        Number of refresh records revoked
    """
    revoked = await SessionService().revoke_all_sessions(user_id)

    logger.info(
        "admin_revoked_sessions",
        admin_id=str(admin.user_id),
        target_user_id=str(user_id),
        revoked=revoked,
    )
    return RevokedSessionsResponse(revoked=revoked)
