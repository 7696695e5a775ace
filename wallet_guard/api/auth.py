"""Bearer token authentication for the billing API."""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from wallet_guard.config.loader import AuthConfig

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


def decode_identity(token: str, config: AuthConfig) -> Optional[str]:
    """Return the token subject, or None if the token cannot be trusted."""
    secret = config.jwt_secret()
    if not secret:
        logger.error("JWT secret %s is not configured; rejecting token", config.jwt_secret_env)
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[config.jwt_algorithm])
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    subject = str(payload.get("sub", "")).strip()
    return subject or None


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Optional[str]:
    """Resolve the caller identity; None when missing or invalid.

    Rejection happens in the handlers so that the error body carries the
    request's correlation id.
    """
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    return decode_identity(credentials.credentials, request.app.state.auth_config)
