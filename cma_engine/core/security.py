from datetime import datetime, timezone

from cachetools import TTLCache
from fastapi import Header, HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_429_TOO_MANY_REQUESTS

from .config import settings

# Per-minute request counters; entries outlive their minute bucket by a little
_rate_counters: TTLCache = TTLCache(maxsize=10_000, ttl=120)

def require_api_key(x_api_key: str | None = Header(default=None, alias="x-api-key")):
    """
    Simple header-based API key check.
    In prod, you could swap to OAuth or JWT validation dependency.
    """
    if not settings.API_KEY:
        # If unset, we allow requests (dev convenience).
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid API key")

def rate_limit(request: Request):
    """
    Basic RPM limiter, in-process and best-effort.
    Keyed by API key (if present) or client IP to discourage abuse.
    """
    rpm = max(1, settings.RATE_LIMIT_RPM)
    client_ip = request.client.host if request.client else "unknown"
    api_key = request.headers.get("x-api-key") or "anon"
    minute_bucket = datetime.now(timezone.utc).strftime("%Y%m%d%H%M")
    key = f"rate:{api_key}:{client_ip}:{minute_bucket}"

    count = _rate_counters.get(key, 0) + 1
    _rate_counters[key] = count
    if count > rpm:
        raise HTTPException(status_code=HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")

def owner_identity(x_owner_id: str | None = Header(default=None, alias="x-owner-id")) -> str | None:
    """
    Caller identity as asserted by the upstream gateway. The engine never
    reads ambient user state; this value is passed explicitly.
    """
    if x_owner_id is None:
        return None
    return x_owner_id.strip() or None
