"""
FastAPI dependencies for caller identity.

The relay consumes identity as an opaque signal: an authenticated user
(valid session cookie or bearer token) or an anonymous caller. Guest
status is decided per request by the relay service.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from chatrelay.auth.session import verify_session_token
from chatrelay.config import Settings, get_settings


def request_settings(request: Request) -> Settings:
    """Settings bound to the running app (tests inject their own), else the cached default."""
    return getattr(request.app.state, "settings", None) or get_settings()


@dataclass(frozen=True)
class Identity:
    """Who is calling: a user id, or a guest with no id."""

    user_id: str | None = None
    is_guest: bool = False

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def guest(cls) -> "Identity":
        return cls(user_id=None, is_guest=True)


def get_session_token(request: Request) -> str | None:
    """
    Extract the session token from the cookie or an ``Authorization`` header.

    Args:
        request: FastAPI request object.

    Returns:
        Session token if present, None otherwise.
    """
    settings = request_settings(request)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def get_current_identity(request: Request) -> Identity | None:
    """
    Get the authenticated caller, if any.

    Does NOT enforce authentication - returns None for anonymous callers.
    """
    claims = verify_session_token(get_session_token(request), request_settings(request))
    if claims is None:
        return None
    return Identity(user_id=claims.user_id)


# Type aliases for cleaner dependency injection
CurrentIdentity = Annotated[Identity | None, Depends(get_current_identity)]
