"""
JWT verification for dashboard connections and the protected HTTP endpoints.

Tokens are issued by the dashboard backend and carry ``userId``, ``tenantId``
and ``role`` claims. The notification hub uses ``verify_token`` directly; the
HTTP routes use the ``get_current_claims`` dependency.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concierge_relay.errors import AuthenticationError

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


class TokenClaims(BaseModel):
    """Identity carried by a dashboard token."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    role: Optional[str] = None


def create_token(
    user_id: str,
    secret: str,
    tenant_id: Optional[str] = None,
    role: Optional[str] = None,
    algorithm: str = "HS256",
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    """
    Issue a token with the same claims the dashboard backend uses.

    Used by local tooling and tests; production tokens come from the dashboard.
    """
    now = datetime.now(timezone.utc)
    payload = {"userId": user_id, "iat": now, "exp": now + expires_delta}
    if tenant_id:
        payload["tenantId"] = tenant_id
    if role:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm=algorithm)


def verify_token(token: str, secret: str, algorithms: Optional[List[str]] = None) -> TokenClaims:
    """
    Decode and validate a JWT.

    Args:
        token: The encoded token
        secret: Shared signing secret
        algorithms: Accepted algorithms (HS256 by default)

    Returns:
        TokenClaims: The identity carried by the token

    Raises:
        AuthenticationError: If the token is expired, malformed, signed with
            another secret or lacks a user id
    """
    if not token:
        raise AuthenticationError("No token provided")
    try:
        payload = jwt.decode(token, secret, algorithms=algorithms or ["HS256"])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e

    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as e:
        raise AuthenticationError("Token is missing the userId claim") from e


async def get_current_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> TokenClaims:
    """Dependency requiring a valid bearer token on an HTTP request."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    settings = request.app.state.settings
    try:
        return verify_token(credentials.credentials, settings.jwt_secret, settings.jwt_algorithms)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
