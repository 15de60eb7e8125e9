"""
Session endpoints.

Real deployments get session tokens from the external identity
collaborator. ``POST /auth/session`` issues one directly for local
development and is refused in production.
"""

from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.auth import CurrentIdentity, create_session_token
from chatrelay.auth.dependencies import request_settings
from chatrelay.core import ForbiddenError, get_logger

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger(__name__)


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, max_length=255)


@router.post("/session")
async def create_session_route(body: SessionRequest, request: Request, response: Response) -> dict[str, Any]:
    settings = request_settings(request)
    if settings.is_production:
        raise ForbiddenError("Session issuing is disabled in production")

    token = create_session_token(body.user_id, settings)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    logger.info("Development session issued", data={"user_id": body.user_id})
    return {"userId": body.user_id, "token": token, "expiresIn": settings.session_ttl_seconds}


@router.get("/session")
async def get_session_route(identity: CurrentIdentity) -> dict[str, Any]:
    if identity is None:
        return {"authenticated": False}
    return {"authenticated": True, "userId": identity.user_id}


@router.delete("/session")
async def delete_session_route(request: Request, response: Response) -> dict[str, str]:
    settings = request_settings(request)
    response.delete_cookie(settings.session_cookie_name)
    return {"status": "signed_out"}
