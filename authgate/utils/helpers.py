"""Helper utilities (clock, responses, request helpers)."""
import ipaddress
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request

from authgate.core.constants import MAX_IP_LENGTH


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns.

    Every service reads the clock through this function so tests can move it.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp(value: Optional[str], length: int) -> Optional[str]:
    if value is None:
        return None
    return value[:length]


def normalize_ip(value: Optional[str]) -> Optional[str]:
    """Canonical form of an IPv4/IPv6 address, or None when ``value`` is not one."""
    if not value:
        return None
    try:
        address = str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None
    return address if len(address) <= MAX_IP_LENGTH else None


def get_client_ip(request: Request) -> str:
    """Return client's IP address from request headers or connection info.

    Checks `X-Forwarded-For` first (comma-separated), then `X-Real-IP` and `X-Client-IP`, then
    falls back to `request.client.host`. Header values that are not IP addresses are skipped.
    Returns 'unknown' if not found.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        # X-Forwarded-For can contain a list of IPs
        forwarded = normalize_ip(x_forwarded_for.split(",")[0])
        if forwarded:
            return forwarded

    for header in ("x-real-ip", "x-client-ip"):
        value = normalize_ip(request.headers.get(header))
        if value:
            return value

    client = getattr(request, "client", None)
    if client and getattr(client, "host", None):
        return clamp(client.host, MAX_IP_LENGTH)

    return "unknown"


def seconds_until(moment: datetime) -> int:
    delta = (moment - utcnow()).total_seconds()
    return max(int(delta + 0.999), 0)
