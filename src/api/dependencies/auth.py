"""
API Key authentication dependency.

Optional authentication controlled by the API_AUTH_ENABLED environment
variable. When enabled, every /jobs request needs an X-API-Key header
matching API_KEY. /health is never authenticated.
"""

import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

# Environment configuration (read at import; reload the module after changing)
API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false").lower() in ("true", "1", "yes", "on")
API_KEY = os.getenv("API_KEY", "")

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,  # missing header is handled below
    description="API key for job endpoints (required when API_AUTH_ENABLED=true)",
)


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Verify API key from X-API-Key header.

    Behavior:
    - API_AUTH_ENABLED=false: always passes (returns None)
    - API_AUTH_ENABLED=true: requires the configured key

    Raises:
        HTTPException: 401 if auth enabled and key is missing/invalid
    """
    if not API_AUTH_ENABLED:
        return None

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not API_KEY or not secrets.compare_digest(api_key, API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key
