from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

from jose import JWTError, jwt

from app.core.config import settings


def _create_token(claims: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {**claims, "type": token_type, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, *, tenant_id: UUID | str | None, role: str) -> str:
    claims = {"sub": subject, "tenant_id": str(tenant_id) if tenant_id else None, "role": role}
    return _create_token(claims, "access", timedelta(minutes=settings.access_token_exp_minutes))


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
