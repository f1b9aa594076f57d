"""Shared dependencies for the credit admin routers."""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from creditgate.settings import settings

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    login: str


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    x_credit_actor: str | None = Header(default=None),
) -> AdminPrincipal:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="admin_api_disabled")
    if credentials is None or not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid_admin_token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AdminPrincipal(login=(x_credit_actor or "admin").strip() or "admin")


def scope_name(owner: str, repo: str) -> str:
    return f"{owner}/{repo}"
