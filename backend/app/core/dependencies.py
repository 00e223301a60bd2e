from __future__ import annotations

import enum
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.logging_config import tenant_id_ctx_var
from app.core.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    super_admin = "super_admin"
    tenant_admin = "tenant_admin"
    tenant_user = "tenant_user"


@dataclass(frozen=True)
class Principal:
    """Caller identity handed over by the external auth layer."""

    user_id: UUID
    tenant_id: UUID | None
    role: Role


def _parse_uuid(value: object) -> UUID | None:
    if value in (None, ""):
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Principal:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = _parse_uuid(payload.get("sub"))
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        role = Role(str(payload.get("role")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token role")

    principal = Principal(user_id=user_id, tenant_id=_parse_uuid(payload.get("tenant_id")), role=role)
    if principal.tenant_id:
        tenant_id_ctx_var.set(str(principal.tenant_id))
    return principal


async def require_tenant(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant context required")
    return principal


async def require_tenant_admin(principal: Principal = Depends(require_tenant)) -> Principal:
    if principal.role != Role.tenant_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant admin access required")
    return principal


async def require_super_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return principal


def client_ip(request: Request) -> str | None:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else None
