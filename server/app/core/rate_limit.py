"""Client IP resolution and request rate limiting (slowapi).

The resolved client IP is also the default origin key for the abuse gate,
so proxy headers are only honoured when the direct peer is trusted.
"""

import ipaddress
from functools import lru_cache

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import get_settings
from app.core.errors import error_response

DEFAULT_RETRY_AFTER = 60
MAX_ORIGIN_LENGTH = 64


@lru_cache(maxsize=1)
def _get_trusted_proxies() -> tuple[
    frozenset[str],
    tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...],
]:
    """Return trusted proxy IPs and CIDR networks from settings (cached)."""
    exact = set()
    networks = []
    for entry in get_settings().trusted_proxies.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "/" in entry:
            networks.append(ipaddress.ip_network(entry, strict=False))
        else:
            exact.add(entry)
    return frozenset(exact), tuple(networks)


def _is_trusted_proxy(ip: str) -> bool:
    exact, networks = _get_trusted_proxies()
    if ip in exact:
        return True
    if networks:
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(addr in net for net in networks)
    return False


def get_client_ip(request: Request) -> str:
    """Get client IP, preferring X-Real-IP over X-Forwarded-For.

    Priority:
    1. X-Real-IP (only if direct connection is a trusted proxy)
    2. X-Forwarded-For first entry (only if direct connection is a trusted proxy)
    3. Direct connection IP
    """
    direct_ip = get_remote_address(request)
    if not _is_trusted_proxy(direct_ip):
        return direct_ip

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    return direct_ip


def get_client_origin(request: Request) -> str:
    """Client IP truncated to a safe key length."""
    return get_client_ip(request)[:MAX_ORIGIN_LENGTH]


def as_ip_address(value: str | None) -> str | None:
    """Return ``value`` if it is a literal IPv4/IPv6 address, else None."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


limiter = Limiter(key_func=get_client_ip, enabled=get_settings().is_rate_limit_enabled)


def _retry_after(exc: RateLimitExceeded) -> int:
    limit = getattr(exc, "limit", None)
    item = getattr(limit, "limit", None)
    if item is None:
        return DEFAULT_RETRY_AFTER
    return int(item.get_expiry())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = _retry_after(exc)
    return error_response(
        request,
        429,
        "Rate limit exceeded. Please try again later.",
        "RATE_LIMITED",
        headers={"Retry-After": str(retry_after)},
        extra={"retry_after": retry_after},
    )
