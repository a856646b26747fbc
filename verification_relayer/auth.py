"""
API key gate for the POST control endpoints.

/trigger-sync, /sync-addresses and /reset-sync spend gas or discard sync
state, so they declare `Depends(verify_api_token)`. The GET status
endpoints never do and stay reachable for monitoring. With API_TOKEN unset
the gate is open, which is only meant for a private network.
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings
from .dependencies import get_app_settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

_CHALLENGE = {"WWW-Authenticate": "X-API-Key"}


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_app_settings),
) -> bool:
    """Reject a control request whose X-API-Key does not match API_TOKEN (401)."""
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Control endpoints require the X-API-Key header",
            headers=_CHALLENGE,
        )

    if not hmac.compare_digest(api_key.encode(), settings.api_token.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers=_CHALLENGE,
        )

    return True
