"""Caller identity, as resolved by the upstream auth layer.

Token and cookie-session verification happen in front of this service. The
resolved owner id reaches us either on ``request.state.owner_id`` (set by an
in-process middleware) or in the ``AUTH_OWNER_HEADER`` header set by the
gateway.
"""

from fastapi import Request

from tabscribe.config import AUTH_OWNER_HEADER
from tabscribe.errors import AuthError


def resolve_owner_id(request: Request) -> str | None:
    owner_id = getattr(request.state, "owner_id", None)
    if owner_id:
        return str(owner_id)
    header = request.headers.get(AUTH_OWNER_HEADER, "").strip()
    return header or None


async def require_owner(request: Request) -> str:
    """FastAPI dependency: the caller's owner id, or 401 via AuthError."""
    owner_id = resolve_owner_id(request)
    if not owner_id:
        raise AuthError("Unauthorized")
    return owner_id
