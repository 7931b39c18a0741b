"""
API key check for memindex-server routes.

MEMINDEX_API_KEY holds one key, or several separated by commas so a new key
can be rolled out before the old one is retired. Empty means every request
is let through (local dev mode).
"""

import hmac
import logging

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from memindex.server.config import settings

logger = logging.getLogger(__name__)

KEY_HEADER = "X-Memindex-Key"

_key_header = APIKeyHeader(name=KEY_HEADER, auto_error=False)


def accepted_keys(raw: str) -> list[str]:
    """Split the configured key setting into the keys currently accepted."""
    return [key.strip() for key in raw.split(",") if key.strip()]


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_auth(
    request: Request,
    presented: str | None = Security(_key_header),
) -> None:
    """Reject the request unless it carries one of the accepted keys."""
    keys = accepted_keys(settings.api_key)
    if not keys:
        return

    if not presented:
        logger.warning("Rejected %s %s from %s: no %s header",
                       request.method, request.url.path, _client(request), KEY_HEADER)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail=f"Missing {KEY_HEADER} header")

    # No early exit: every accepted key is compared
    matched = False
    for key in keys:
        matched |= hmac.compare_digest(presented.encode(), key.encode())
    if not matched:
        logger.warning("Rejected %s %s from %s: unknown API key",
                       request.method, request.url.path, _client(request))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
