"""Bearer-token authentication for the Tubely API."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Request

from api.common import get_real_ip
from api.errors import UnauthorizedError
from config import JWT_ALGORITHM, JWT_EXPIRY_SECONDS, JWT_ISSUER, JWT_SECRET

# Security event logger - separate from regular application logging
security_logger = logging.getLogger("security.auth")

logger = logging.getLogger(__name__)


def _get_request_context(request: Optional[Request]) -> dict:
    """Security-relevant request details for auth log records."""
    if request is None:
        return {"ip_address": "unknown", "user_agent": "unknown", "path": None}
    return {
        "ip_address": get_real_ip(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
        "path": request.url.path,
    }


def get_bearer_token(authorization: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header value.

    Raises:
        UnauthorizedError: header missing or not a bearer credential
    """
    if not authorization:
        raise UnauthorizedError("Couldn't find JWT")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Malformed authorization header")
    return token


def make_jwt(user_id: str, secret: str, expires_in: int = JWT_EXPIRY_SECONDS) -> str:
    """Issue an access token for user_id, valid for expires_in seconds."""
    now = datetime.now(timezone.utc)
    payload = {
        "iss": JWT_ISSUER,
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def validate_jwt(token: str, secret: str) -> str:
    """
    Verify signature, expiry and issuer and return the user id (``sub``).

    Raises:
        UnauthorizedError: token expired, tampered with, or missing a subject
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            options={"require": ["exp", "sub", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Couldn't validate JWT")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Couldn't validate JWT")
    return user_id


async def get_current_user_id(request: Request) -> str:
    """FastAPI dependency returning the authenticated caller's user id."""
    ctx = _get_request_context(request)

    if not JWT_SECRET:
        logger.error("TUBELY_JWT_SECRET is not set; rejecting authenticated request")
        raise UnauthorizedError("Authentication is not configured")

    try:
        token = get_bearer_token(request.headers.get("Authorization"))
        user_id = validate_jwt(token, JWT_SECRET)
    except UnauthorizedError as e:
        security_logger.warning(
            f"Authentication failed: {e.message}",
            extra={"event": "auth_failure", "reason": e.message, **ctx},
        )
        raise

    security_logger.debug(
        "Authentication succeeded",
        extra={"event": "auth_success", "user_id": user_id, **ctx},
    )
    return user_id
