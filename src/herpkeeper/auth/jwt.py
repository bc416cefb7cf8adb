"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (5min), used for API calls
- Refresh token: long-lived (7 days), used to get new access tokens

The subject is the username and the token carries the profile role.
Issuer and audience are always checked.

verify_token_ignore_expiration() exists for the WebSocket hub: a socket
authenticates once with whatever access token the browser holds, and the
socket's own lifetime is the real expiry boundary.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog

from herpkeeper.config import settings

logger = structlog.get_logger()


class TokenError(Exception):
    """Raised when token creation/verification fails."""


@dataclass(frozen=True)
class TokenIdentity:
    """Decoded identity carried by a verified token."""

    subject: str
    role: Optional[str] = None


def _create(username: str, role: str, expires: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "role": role,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "exp": now + expires,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    username: str,
    role: str = "member",
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    logger.debug("token.create_access", username=username)
    minutes = (
        expires_minutes
        if expires_minutes is not None
        else settings.access_token_expire_minutes
    )
    return _create(username, role, timedelta(minutes=minutes))


def create_refresh_token(
    username: str,
    role: str = "member",
    expires_days: Optional[int] = None,
) -> str:
    """Create a JWT refresh token."""
    logger.debug("token.create_refresh", username=username)
    return _create(
        username,
        role,
        timedelta(days=expires_days or settings.refresh_token_expire_days),
    )


def _decode(token: str, verify_exp: bool) -> TokenIdentity:
    if not isinstance(token, str) or not token:
        raise TokenError("Token must be a non-empty string")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_exp": verify_exp, "require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    return TokenIdentity(subject=payload["sub"], role=payload.get("role"))


def verify_token(token: str) -> TokenIdentity:
    """Verify and decode a JWT token.

    Returns the decoded identity on success.
    Raises TokenError on failure.
    """
    return _decode(token, verify_exp=True)


def verify_token_ignore_expiration(token: str) -> TokenIdentity:
    """Verify signature, issuer and audience but accept expired tokens."""
    logger.debug("token.verify_ignore_expiration")
    return _decode(token, verify_exp=False)
