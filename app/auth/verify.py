"""
Supabase Auth bearer tokens (ES256, verified against the project JWKS).

`auth_dependency` yields the decoded claims; `current_user_id` is the
dependency most routes use. Signing keys are cached by PyJWKClient for
JWKS_CACHE_SECONDS.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SUPABASE_AUDIENCE = "authenticated"
JWKS_CACHE_SECONDS = 300

_jwk_client = PyJWKClient(settings.jwks_url(), cache_keys=True, lifespan=JWKS_CACHE_SECONDS)
_security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
    except jwt.PyJWKClientConnectionError as e:
        logger.error("JWKS endpoint unreachable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication temporarily unavailable",
        ) from e
    except jwt.PyJWTError as e:
        raise _unauthorized("Invalid authentication token") from e

    try:
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise _unauthorized("Authentication token expired") from e
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token", error_type=type(e).__name__)
        raise _unauthorized("Invalid authentication token") from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    return verify_jwt(credentials.credentials)


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token")
    return user_id
