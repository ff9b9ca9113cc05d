"""Principal resolution: signed bearer tokens carrying a user id.

The token only identifies the user. Roles are read from the store once per
request, so a role change takes effect on the caller's next request.
"""

import logging

from fastapi import Header, HTTPException, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from taskgate.core.config import settings
from taskgate.domain.principal import Principal
from taskgate.services import entity_store


logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(str(settings.secret_key), salt="taskgate-principal")


def issue_principal_token(user_id: str) -> str:
    """Sign a token for the user."""
    return serializer.dumps({"user_id": user_id})


def read_principal_token(token: str) -> str | None:
    """Return the user id in a valid, unexpired token, else None."""
    try:
        payload = serializer.loads(token, max_age=settings.principal_token_max_age_seconds)
    except SignatureExpired:
        logger.warning("principal_token_expired")
        return None
    except BadSignature:
        logger.warning("principal_token_invalid")
        return None

    user_id = payload.get("user_id") if isinstance(payload, dict) else None
    return str(user_id) if user_id else None


async def load_principal(user_id: str) -> Principal | None:
    """Build the principal for a user id from its current roles; None if the user is gone."""
    user = await entity_store.find_user(user_id)
    if user is None:
        return None
    return Principal(id=user.id, roles=user.roles)


async def resolve_principal(authorization: str | None = Header(default=None)) -> Principal:
    """FastAPI dependency: resolve the principal from an ``Authorization: Bearer`` header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    user_id = read_principal_token(authorization[len("bearer ") :].strip())
    principal = await load_principal(user_id) if user_id else None
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    return principal


async def resolve_optional_principal(authorization: str | None = Header(default=None)) -> Principal | None:
    """Like resolve_principal, but None when no token is sent (bootstrap registration)."""
    if authorization is None:
        return None
    return await resolve_principal(authorization)
