"""FastAPI dependencies: request context and role checks"""

from dataclasses import dataclass
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from portal.core.exceptions import AuthError
from portal.core.response import ErrorCode
from portal.core.security import decode_access_token

security_scheme = HTTPBearer(auto_error=False)

# ── Membership roles ──
REVIEWER_ROLES = ("caseworker", "platform_admin")


@dataclass
class RequestContext:
    user_id: int
    organization_id: int
    role: str
    correlation_id: str


def get_correlation_id(request: Request) -> str:
    """Correlation id set by the middleware, else the inbound header, else a new one"""
    cid = getattr(request.state, "correlation_id", None) or request.headers.get("x-correlation-id")
    if not cid:
        cid = str(uuid4())
        request.state.correlation_id = cid
    return cid


async def get_request_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> RequestContext:
    """Resolve the caller's user, active organization and role from the bearer token"""
    if not credentials:
        raise AuthError(ErrorCode.TOKEN_INVALID, "Missing bearer token")

    claims = decode_access_token(credentials.credentials)
    if not claims:
        raise AuthError(ErrorCode.TOKEN_EXPIRED, "Token expired or invalid")

    try:
        user_id = int(claims["sub"])
        organization_id = int(claims["org"])
    except (TypeError, ValueError):
        raise AuthError(ErrorCode.TOKEN_INVALID, "Malformed token claims")

    return RequestContext(
        user_id=user_id,
        organization_id=organization_id,
        role=str(claims["role"]),
        correlation_id=get_correlation_id(request),
    )


def require_role(*roles: str):
    """Role check dependency factory"""
    async def checker(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if ctx.role not in roles:
            raise AuthError(ErrorCode.PERMISSION_DENIED, f"Requires one of roles: {', '.join(roles)}")
        return ctx
    return checker
