from typing import Optional

from fastapi import Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.exceptions import AuthenticationError
from app.domains.collaboration.entities import CallerIdentity
from app.shared.utils.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)


def identity_from_token(token: Optional[str]) -> Optional[CallerIdentity]:
    """Map a bearer token to the caller; ``None`` when the token is missing or invalid"""
    if not token:
        return None
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        return None
    user_id = str(payload["sub"])
    return CallerIdentity(
        user_id=user_id,
        name=payload.get("name") or user_id,
        role=payload.get("role"),
    )


async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> CallerIdentity:
    if not creds or creds.scheme.lower() != "bearer":
        raise AuthenticationError("Authentication required")
    caller = identity_from_token(creds.credentials)
    if caller is None:
        raise AuthenticationError("Invalid token")
    return caller
