"""
Guard for the /api/sms admin endpoints (manual send, stats, breakers).

The key travels in ``X-Admin-API-Key``. An empty ADMIN_API_KEY closes the
endpoints rather than opening them.
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-API-Key"

_admin_key = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


def _refuse(request: Request, code: int, detail: str, reason: str) -> HTTPException:
    logger.warning(
        "Admin request refused",
        extra_data={
            "reason": reason,
            "path": request.url.path,
            "client_host": request.client.host if request.client else None,
        }
    )
    return HTTPException(status_code=code, detail=detail)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Depends(_admin_key),
) -> None:
    """401 without the header, 403 for a wrong key or when no key is configured"""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise _refuse(request, status.HTTP_403_FORBIDDEN, "ADMIN_API_KEY is not configured", "unconfigured")
    if not api_key:
        raise _refuse(
            request,
            status.HTTP_401_UNAUTHORIZED,
            f"Missing API key, header required: {ADMIN_KEY_HEADER}",
            "missing_key",
        )
    if not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise _refuse(request, status.HTTP_403_FORBIDDEN, "Invalid API key", "wrong_key")
