"""Resolve the acting ``Caller`` for a request.

Two modes, selected by ``Settings.auth_enabled``:

* enabled: requires ``Authorization: Bearer <jwt>``. Tokens are HS256 JWTs
  signed with ``JWT_SECRET`` whose ``sub`` is the user id. They are minted by
  the identity provider that runs the login flow (see ``create_access_token``).
* disabled (local dev): the ``X-User-Id`` header names the acting user.

Either way the user must exist in the database. Admins are the users whose
email appears in ``ADMIN_EMAILS``.
"""
from __future__ import annotations

import time
from typing import Annotated, Optional

import structlog
from fastapi import Depends, Header, HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

import crud
import models
from database import get_db
from errors import AdminRequired
from schemas import Caller
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class TokenPayload(BaseModel):
    sub: str
    exp: int


def _secret(settings: Settings) -> str:
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured while auth is enabled")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Authentication is misconfigured"
        )
    return settings.jwt_secret


def create_access_token(user_id: int, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    expires = int(time.time()) + settings.access_token_ttl_minutes * 60
    claims = {"sub": str(user_id), "exp": expires}
    return jwt.encode(claims, _secret(settings), algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Optional[Settings] = None) -> TokenPayload:
    """Verify a session JWT and return its payload.

    Raises HTTPException(401) on failure.
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, _secret(settings), algorithms=[settings.jwt_algorithm])
        return TokenPayload.model_validate(payload)
    except (JWTError, PydanticValidationError) as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def caller_for_user(user: models.User, settings: Optional[Settings] = None) -> Caller:
    settings = settings or get_settings()
    admin_emails = {email.lower() for email in settings.admin_emails}
    return Caller(
        user_id=user.id,
        role=models.Role(user.role),
        email=user.email,
        is_admin=user.email.lower() in admin_emails,
    )


def _parse_user_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user id")


# --- FastAPI dependencies ---
def get_current_caller(
    authorization: Annotated[Optional[str], Header()] = None,
    x_user_id: Annotated[Optional[str], Header()] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Caller:
    if settings.auth_enabled:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
        payload = verify_token(authorization.split(" ", 1)[1], settings)
        user_id = _parse_user_id(payload.sub)
    else:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header required in local mode"
            )
        user_id = _parse_user_id(x_user_id)

    user = crud.get_user_by_id(db, user_id)
    if not user:
        logger.warning("Unknown user for credentials", user_id=user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return caller_for_user(user, settings)


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_admin:
        raise AdminRequired()
    return caller
