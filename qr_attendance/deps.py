from __future__ import annotations
from typing import AsyncGenerator, Iterable
import hmac
from fastapi import Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.broadcast import hub
from .core.config import get_settings
from .core.redis import allow_request
from .services.lifecycle import SessionLifecycle
from .services.submission import ScanSubmissionProtocol

settings = get_settings()

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

def match_role(token: str | None, roles: Iterable[str]) -> str | None:
    """Return the first of `roles` whose static demo token equals `token`."""
    if not token:
        return None
    tokens = settings.role_tokens
    for role in roles:
        expected = tokens.get(role)
        if expected and hmac.compare_digest(token.encode(), expected.encode()):
            return role
    return None

def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip()

def require_roles(*roles: str):
    async def _dep(authorization: str | None = Header(default=None)) -> str:
        role = match_role(_bearer(authorization), roles)
        if role is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
        return role
    return _dep

def require_roles_or_query(*roles: str):
    """Same as require_roles, but also accepts ?token= (browser downloads via window.open)."""
    async def _dep(
        authorization: str | None = Header(default=None),
        token: str | None = Query(default=None),
    ) -> str:
        role = match_role(_bearer(authorization) or token, roles)
        if role is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
        return role
    return _dep

def rate_limited(route_key: str):
    async def _dep(request: Request) -> None:
        ip = request.client.host if request.client else "unknown"
        if not await allow_request(ip, route_key):
            raise HTTPException(status_code=429, detail="Too many requests")
    return _dep

def get_lifecycle(db: AsyncSession = Depends(get_db)) -> SessionLifecycle:
    return SessionLifecycle(db, hub=hub)

def get_protocol(db: AsyncSession = Depends(get_db)) -> ScanSubmissionProtocol:
    return ScanSubmissionProtocol(db, hub=hub)
