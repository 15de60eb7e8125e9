"""
Signed session tokens.

The relay does not own users or a session store. The external session
collaborator issues a token bound to a user id; the relay only checks
the HMAC signature and expiry. Token layout:
``base64url(json{"sub", "exp"}).hex(hmac_sha256)``.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass

from chatrelay.config import Settings


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    user_id: str
    expires_at: int


def _sign(payload: str, secret_key: str) -> str:
    """
    Compute the HMAC signature of an encoded payload.

    Args:
        payload: The base64url-encoded claims.
        secret_key: Application secret.

    Returns:
        HMAC-SHA256 signature as hex string.
    """
    return hmac.new(secret_key.encode(), payload.encode(), hashlib.sha256).hexdigest()


def create_session_token(user_id: str, settings: Settings, now: float | None = None) -> str:
    """
    Issue a session token for ``user_id`` valid for ``session_ttl_seconds``.

    Returns:
        URL-safe token string suitable for a cookie or bearer header.
    """
    issued = int(now if now is not None else time.time())
    claims = {"sub": user_id, "exp": issued + settings.session_ttl_seconds}
    payload = base64.urlsafe_b64encode(
        json.dumps(claims, separators=(",", ":")).encode()
    ).decode().rstrip("=")
    return f"{payload}.{_sign(payload, settings.secret_key)}"


def verify_session_token(
    token: str | None, settings: Settings, now: float | None = None
) -> SessionClaims | None:
    """
    Validate a session token.

    Returns:
        SessionClaims if the signature matches and the token has not expired,
        None otherwise.
    """
    if not token or "." not in token:
        return None
    payload, _, signature = token.rpartition(".")
    if not hmac.compare_digest(_sign(payload, settings.secret_key), signature):
        return None

    try:
        padded = payload + "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(claims, dict):
        return None

    user_id = claims.get("sub")
    expires_at = claims.get("exp")
    if not isinstance(user_id, str) or not user_id or not isinstance(expires_at, int):
        return None
    current = now if now is not None else time.time()
    if expires_at <= current:
        return None
    return SessionClaims(user_id=user_id, expires_at=expires_at)
