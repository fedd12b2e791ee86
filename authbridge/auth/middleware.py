"""Bearer authentication for tenant and operator routes."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.config import settings
from authbridge.database import get_db
from authbridge.models import ConnectedDatabase
from authbridge.storage.repositories import get_active_database_by_credential


API_KEY_HEADER = APIKeyHeader(name="Authorization", auto_error=False)

OPERATOR_ACTOR = "operator"


def _bearer(auth_header: str | None) -> str:
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header. Use: Bearer <token>",
        )
    api_key = auth_header[7:].strip()
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )
    return api_key


async def get_database_from_bearer(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    auth_header: str | None = Depends(API_KEY_HEADER),
) -> ConnectedDatabase:
    """Resolve the tenant whose stored connection credential matches the bearer."""
    api_key = _bearer(auth_header)
    database = await get_active_database_by_credential(db, api_key)
    if not database:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token. Token must match a connected database auth token.",
        )
    return database


async def require_operator(
    auth_header: str | None = Depends(API_KEY_HEADER),
) -> str:
    """Check the operator bearer; returns the actor name for audit events."""
    api_key = _bearer(auth_header)
    if not hmac.compare_digest(api_key.encode(), settings.admin_api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    return OPERATOR_ACTOR


# Type aliases for dependency injection
TenantDep = Annotated[ConnectedDatabase, Depends(get_database_from_bearer)]
OperatorDep = Annotated[str, Depends(require_operator)]
