"""
Supabase JWT authentication for the matching API.

The requesting user is always the JWT subject; routes never take the
ranking user's id from the request body.

Usage:
    from core.auth import require_auth, AuthenticatedUser

    @router.post("/api/matches")
    async def matches(user: AuthenticatedUser = Depends(require_auth)):
        service.get_ranked_candidates(user.id, ...)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import get_settings
from core.logging import get_logger

logger = get_logger(__name__)

JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = "authenticated"

security = HTTPBearer(
    scheme_name="Supabase JWT",
    description="Access token issued by Supabase Auth.",
    auto_error=False,
)


@dataclass
class AuthenticatedUser:
    """
    Verified caller.

    Attributes:
        id: user UUID (``sub`` claim)
        email: email claim, if present
        role: Postgres role, normally ``authenticated``
        session_id: Supabase session id
        is_anonymous: anonymous sign-in
    """
    id: str
    email: Optional[str] = None
    role: str = JWT_AUDIENCE
    session_id: Optional[str] = None
    is_anonymous: bool = False

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "AuthenticatedUser":
        return cls(
            id=str(claims["sub"]),
            email=claims.get("email"),
            role=claims.get("role", JWT_AUDIENCE),
            session_id=claims.get("session_id"),
            is_anonymous=bool(claims.get("is_anonymous", False)),
        )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify signature, expiry and audience of a Supabase access token.

    Raises:
        HTTPException: 401 for any invalid token, 503 when no secret is configured
    """
    secret = secret if secret is not None else get_settings().supabase_jwt_secret
    if not secret:
        logger.error("SUPABASE_JWT_SECRET not configured, rejecting authenticated request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            audience=JWT_AUDIENCE,
            options={"require": ["sub", "exp", "aud"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidAudienceError:
        raise _unauthorized("Invalid token audience")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")


async def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """FastAPI dependency: 401 unless a valid bearer token is present."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authorization header required")
    return AuthenticatedUser.from_claims(decode_access_token(credentials.credentials))
