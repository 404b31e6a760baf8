"""Rate limiter singleton — import from here to avoid circular deps.

Only the login endpoint is limited, keyed by client address.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings


def client_address(request: Request) -> str:
    """Caller IP; behind a trusted proxy, the first X-Forwarded-For hop."""
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=client_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    headers_enabled=False,
)
