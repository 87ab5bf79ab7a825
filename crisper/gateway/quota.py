"""Per-client request quotas for the proxy gate, backed by the limits library.

Each (endpoint, client) bucket gets a fixed window that opens on its first
hit; every hit counts, rejected ones included. State lives in a limits
storage (in-process MemoryStorage by default) and is lost on restart. Across
several server instances each keeps its own table unless a shared storage
(e.g. limits' Redis storage) is passed in, so the quota is a best-effort
deterrent, not a hard guarantee.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int = 0


class QuotaTable:
    """Thin adapter over a limits fixed-window limiter, injected into the gate."""

    def __init__(self, window_seconds: int = 60, storage: Optional[Storage] = None) -> None:
        """
        Args:
            window_seconds: Window length; a bucket resets once its window has elapsed.
            storage: limits storage backend. Defaults to a fresh MemoryStorage.
        """
        self.window_seconds = window_seconds
        self.storage = storage or MemoryStorage()
        self.limiter = FixedWindowRateLimiter(self.storage)

    def _item(self, limit: int) -> RateLimitItemPerSecond:
        return RateLimitItemPerSecond(limit, self.window_seconds)

    def hit(self, endpoint: str, client_id: str, limit: int) -> QuotaDecision:
        """Count one request against a bucket and decide whether it may proceed.

        Args:
            endpoint: Endpoint name, e.g. "generate".
            client_id: Client identity, e.g. "203.0.113.7".
            limit: Maximum requests allowed in one window.

        Returns:
            QuotaDecision; retry_after is the number of seconds until the
            window resets when the request is rejected.
        """
        item = self._item(limit)
        allowed = self.limiter.hit(item, endpoint, client_id)
        count = self.storage.get(item.key_for(endpoint, client_id))
        if allowed:
            return QuotaDecision(allowed=True, count=count, limit=limit)

        stats = self.limiter.get_window_stats(item, endpoint, client_id)
        return QuotaDecision(
            allowed=False,
            count=count,
            limit=limit,
            retry_after=max(1, math.ceil(stats.reset_time - time.time())),
        )

    def count(self, endpoint: str, client_id: str, limit: int) -> int:
        """Hits recorded in the bucket's current window, for diagnostics and tests."""
        return self.storage.get(self._item(limit).key_for(endpoint, client_id))
