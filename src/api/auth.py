"""Authentication API endpoints."""

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, Response, status

from src.api.cookies import clear_access_cookie, set_access_cookie
from src.api.dependencies import get_current_identity, get_device_info
from src.errors import UnauthenticatedError
from src.models.auth import (
    ChangePasswordRequest,
    DeviceInfo,
    ForgotPasswordRequest,
    Identity,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisteredUser,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    SessionResponse,
    UserProfile,
    UserSummary,
)
from src.services.password_reset_service import PasswordResetService
from src.services.rotation_service import RefreshRotationService
from src.services.session_service import SessionService
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

LOGOUT_MESSAGE = "Logged out"
RESET_COMPLETE_MESSAGE = "Password has been reset"


@router.get("/status")
async def auth_status() -> dict:
    """Liveness check for the auth router."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest) -> RegisterResponse:
    """Create an account with ROLE_USER.

    Raises:
        ConflictError 409: If the email is already registered
    """
    user_service = UserService()
    user = await user_service.create_user(
        email=request.email,
        password=request.password,
        name=request.name,
    )

    return RegisterResponse(
        user=RegisteredUser(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
        )
    )


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
) -> SessionResponse:
    """Login with email and password.

    Sets the access cookie and returns the refresh credential.

    Raises:
        UnauthenticatedError 401: If the credentials are invalid
    """
    session = await SessionService().login(request, device)
    set_access_cookie(response, session.access_token)
    return SessionResponse.from_session(session)


async def _read_logout_token(request: Request) -> Optional[str]:
    """Refresh token from a logout body; None for a missing or malformed body."""
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return LogoutRequest.model_validate(body).refresh_token


@router.post("/logout")
async def logout(request: Request, response: Response) -> MessageResponse:
    """End the current session.

    Always succeeds and always clears the access cookie. If a refresh token
    is supplied, exactly that record is revoked. A store failure is logged
    and does not fail the request.
    """
    clear_access_cookie(response)

    refresh_token = await _read_logout_token(request)
    try:
        await SessionService().logout(refresh_token)
    except Exception as e:
        logger.warning("logout_revoke_failed", error=str(e), error_type=type(e).__name__)

    return MessageResponse(message=LOGOUT_MESSAGE)


@router.post("/refresh")
async def refresh(request: RefreshRequest, response: Response) -> SessionResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The presented refresh token is retired; presenting it again fails.

    Raises:
        UnauthenticatedError 401: If the refresh token is invalid, expired, revoked or reused
    """
    session = await RefreshRotationService().rotate(request.refresh_token)
    set_access_cookie(response, session.access_token)
    return SessionResponse.from_session(session)


@router.get("/me")
async def get_me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Get the current user, re-read from the credential store.

    Raises:
        UnauthenticatedError 401: If not signed in or the account no longer exists
    """
    user = await UserService().get_by_id(identity.user_id)
    if user is None:
        raise UnauthenticatedError("Account not found")
    return MeResponse(user=UserProfile.from_user(user))


@router.post("/forgot-password")
async def forgot_password(request: ForgotPasswordRequest) -> MessageResponse:
    """Request a password reset email.

    The response is identical whether or not the account exists.
    """
    message = await PasswordResetService().request_reset(request.email)
    return MessageResponse(message=message)


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
) -> ResetPasswordResponse:
    """Set a new password using an emailed reset token.

    All existing sessions are revoked. With auto-login enabled a new session
    is started and its access cookie set.

    Raises:
        UnauthenticatedError 401: If the token is unknown, used or expired
    """
    user, session = await PasswordResetService().complete_reset(request, device)

    if session is None:
        return ResetPasswordResponse(
            message=RESET_COMPLETE_MESSAGE,
            user=UserSummary.from_user(user),
        )

    set_access_cookie(response, session.access_token)
    return ResetPasswordResponse(
        message=RESET_COMPLETE_MESSAGE,
        user=UserSummary.from_user(user),
        refresh_token=session.refresh_token,
        refresh_id=session.refresh_record.id,
        refresh_expires_at=session.refresh_record.expires_at,
    )


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    response: Response,
    identity: Identity = Depends(get_current_identity),
    device: DeviceInfo = Depends(get_device_info),
) -> SessionResponse:
    """Change the password of the signed-in user.

    Every existing session is revoked and a new one is started for this
    device.

    Raises:
        UnauthenticatedError 401: If not signed in or the current password is wrong
    """
    session = await SessionService().change_password(identity.user_id, request, device)
    set_access_cookie(response, session.access_token)
    logger.info("password_change_completed", user_id=str(identity.user_id))
    return SessionResponse.from_session(session)
