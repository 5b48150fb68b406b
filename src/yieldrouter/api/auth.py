"""API key authentication for owner-only endpoints."""

import hmac

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from yieldrouter.config import settings
from yieldrouter.core.access import Principal
from yieldrouter.logging import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def validate_owner_key(api_key: str | None) -> bool:
    """Constant-time comparison against ``settings.api_owner_key``."""
    expected = settings.api_owner_key
    if not expected or not api_key:
        return False
    return hmac.compare_digest(api_key, expected)


async def require_owner(
    request: Request,
    api_key: str | None = Security(api_key_header),
) -> Principal:
    """Resolve the owner principal, or reject the request."""
    endpoint = request.url.path
    client_ip = request.client.host if request.client else "unknown"

    if not api_key:
        logger.warning(f"Auth failed: Missing API key from {client_ip} for {endpoint}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not validate_owner_key(api_key):
        logger.warning(f"Auth failed: Invalid API key from {client_ip} for {endpoint}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    manager = request.app.state.manager
    return manager.access.owner


OwnerPrincipal = Depends(require_owner)
