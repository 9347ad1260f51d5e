"""Access-token cookie transport."""

from fastapi import Response

from src.config import get_settings

ACCESS_COOKIE_NAME = "access_token"


def _cookie_flags() -> dict:
    settings = get_settings()
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "none" if settings.is_production else "lax",
        "path": "/",
    }


def set_access_cookie(response: Response, access_token: str) -> None:
    """Attach the access credential as an HttpOnly cookie.

    The cookie lives exactly as long as the credential itself. Production
    responses are Secure and SameSite=None so a separately hosted frontend
    can send them cross-site.
    """
    max_age = int(get_settings().access_token_lifetime.total_seconds())
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        access_token,
        max_age=max_age,
        **_cookie_flags(),
    )


def clear_access_cookie(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE_NAME, **_cookie_flags())
