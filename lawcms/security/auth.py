from __future__ import annotations

import logging

import jwt
from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lawcms.models.security import User
from lawcms.security.config import SecurityConfig
from lawcms.security.context import SessionUser
from lawcms.security.sessions import decode_token, validate_session

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_bearer_token(request: Request, config: SecurityConfig) -> str | None:
    """
    Return the bearer token of the request, or None when no header was sent.

    - Input: `Authorization: Bearer <token>`
    - `session` provider: `<token>` is a signed session token from `/auth/login`
    - `dummy` provider: `<token>` is an integer user id (local demos and tests)
    """

    header_name = config.auth.authorization_header
    bearer_prefix = config.auth.bearer_prefix

    raw = request.headers.get(header_name)
    if not raw:
        logger.info("Missing Authorization header (auth required) path=%s method=%s", request.url.path, request.method)
        return None

    prefix = f"{bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Expected '{bearer_prefix} <token>'.",
        )

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Missing token after '{bearer_prefix}'.",
        )

    return token


def resolve_token(db: Session, token: str, config: SecurityConfig, secret: str) -> tuple[int, int | None]:
    """Map a bearer token to `(user_id, session_id)`; raises 401 if it does not identify a live session."""

    if config.auth.provider == "dummy":
        try:
            return int(token), None
        except ValueError as exc:
            raise _unauthorized("Invalid bearer token (expected integer user id)") from exc

    try:
        payload = decode_token(token, secret)
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected session token: %s", type(exc).__name__)
        raise _unauthorized("Invalid or expired session") from exc

    user_session = validate_session(db, payload["sid"])
    if user_session is None or str(user_session.user_id) != payload["sub"]:
        raise _unauthorized("Invalid or expired session")

    return user_session.user_id, user_session.id


def load_user(db: Session, user_id: int) -> User:
    user = db.execute(
        select(User).where(User.id == user_id).options(selectinload(User.department))
    ).scalar_one_or_none()

    if user is None or not user.is_active:
        raise _unauthorized("Invalid or inactive user")

    return user


def to_session_user(user: User, session_id: int | None = None) -> SessionUser:
    return SessionUser(
        id=user.id,
        role=user.role,
        department_id=user.department_id,
        name=user.name,
        email=user.email,
        session_id=session_id,
    )
