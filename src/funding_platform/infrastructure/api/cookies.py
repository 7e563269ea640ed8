"""Session cookie helpers."""

from fastapi import Response

from funding_platform.core.config import Settings


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    """Issue the HttpOnly session cookie.

    The cookie lives no longer than the absolute session timeout.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=int(settings.session_absolute_timeout.total_seconds()),
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite=settings.session_cookie_samesite,
    )
