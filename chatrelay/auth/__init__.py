"""Caller identity for the relay."""

from chatrelay.auth.dependencies import (
    CurrentIdentity,
    Identity,
    get_current_identity,
    get_session_token,
)
from chatrelay.auth.session import SessionClaims, create_session_token, verify_session_token

__all__ = [
    # Session tokens
    "SessionClaims",
    "create_session_token",
    "verify_session_token",
    # Dependencies
    "CurrentIdentity",
    "Identity",
    "get_current_identity",
    "get_session_token",
]
