"""Origin allow-list and client identity derivation for the proxy gate."""

from fnmatch import fnmatch
from typing import Iterable, Mapping, Optional
from urllib.parse import urlsplit


LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})
UNKNOWN_CLIENT = "unknown"


def _hostname(origin: str) -> Optional[str]:
    try:
        parts = urlsplit(origin.strip())
    except ValueError:
        return None
    if parts.scheme not in ("http", "https"):
        return None
    return parts.hostname


class OriginPolicy:
    """Decides whether a declared Origin (or Referer) may use the proxy.

    Loopback hosts are always allowed for development. Otherwise the origin
    must equal one of allowed_origins, or its hostname must match one of the
    allowed_host_patterns globs. Hostnames are compared after parsing, so
    look-alikes such as localhost.evil.com do not pass as loopback.
    """

    def __init__(
        self,
        allowed_origins: Iterable[str] = (),
        allowed_host_patterns: Iterable[str] = (),
    ) -> None:
        self.allowed_origins = {origin.rstrip("/").lower() for origin in allowed_origins}
        self.allowed_host_patterns = [pattern.lower() for pattern in allowed_host_patterns]

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False

        hostname = _hostname(origin)
        if not hostname:
            return False
        hostname = hostname.lower()

        if hostname in LOOPBACK_HOSTS:
            return True

        parts = urlsplit(origin.strip())
        normalized = f"{parts.scheme}://{parts.netloc}".lower()
        if normalized in self.allowed_origins:
            return True

        return any(fnmatch(hostname, pattern) for pattern in self.allowed_host_patterns)


def request_origin(headers: Mapping[str, str]) -> Optional[str]:
    """Declared origin: the Origin header, falling back to Referer."""
    return headers.get("origin") or headers.get("referer") or None


def client_identity(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    trust_forwarded: bool = True,
) -> str:
    """Identify the client for quota purposes.

    With trust_forwarded, uses the first X-Forwarded-For hop, then X-Real-IP,
    then the shared "unknown" bucket. These headers are client-supplied and
    spoofable unless a trusted reverse proxy overwrites them. Without
    trust_forwarded, uses the socket peer address.
    """
    if not trust_forwarded:
        return peer or UNKNOWN_CLIENT

    forwarded = headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    real_ip = headers.get("x-real-ip", "").strip()
    return real_ip or UNKNOWN_CLIENT
