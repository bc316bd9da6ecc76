# services/rate_limiter.py
# ============================================================================
# HANDMADE STORE BACKEND — IN-PROCESS RATE LIMITER
# ============================================================================
# Fixed-window counters keyed by (caller identifier, rule). State is local to
# this process; a shared-store limiter only has to provide the same
# check(identifier, rule) -> RateLimitResult contract.
# ============================================================================

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, NamedTuple, Optional

import structlog
from starlette.requests import Request

from config import RateLimitRule

logger = structlog.get_logger(component="rate_limiter")

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float


class RateLimitResult(NamedTuple):
    success: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds


class RateLimiter:
    """
    Admission control per caller per rule.

    A rejected request leaves the counter untouched, so a caller that keeps
    retrying stays rejected until the window resets.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: Dict[str, RateLimitRecord] = {}
        # Held only for dict work, never across an await
        self._lock = threading.Lock()

    @staticmethod
    def key_for(identifier: str, rule: RateLimitRule) -> str:
        return f"{identifier}:{rule.max_requests}:{rule.window_seconds}"

    async def check(self, identifier: str, rule: RateLimitRule) -> RateLimitResult:
        return self.hit(identifier, rule)

    def hit(self, identifier: str, rule: RateLimitRule) -> RateLimitResult:
        key = self.key_for(identifier, rule)
        with self._lock:
            now = self._clock()
            record = self._store.get(key)
            if record is None or record.reset_at < now:
                record = RateLimitRecord(count=0, reset_at=now + rule.window_seconds)
                self._store[key] = record

            if record.count >= rule.max_requests:
                return RateLimitResult(False, rule.max_requests, 0, record.reset_at)

            record.count += 1
            return RateLimitResult(
                True, rule.max_requests, rule.max_requests - record.count, record.reset_at
            )

    def cleanup(self) -> int:
        """Drop expired windows. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, r in self._store.items() if r.reset_at < now]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("rate_limit_cleanup", removed=len(expired), remaining=len(self))
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def get_client_identifier(request: Request, user_id: Optional[str] = None) -> str:
    """
    Caller identity for rate limiting.

    Authenticated user first, then proxy headers (cf-connecting-ip,
    x-real-ip, first x-forwarded-for hop), then the socket peer.
    """
    if user_id:
        return f"user:{user_id}"

    headers = request.headers
    ip = headers.get("cf-connecting-ip") or headers.get("x-real-ip")
    if not ip:
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
    if not ip and request.client:
        ip = request.client.host
    return f"ip:{ip or UNKNOWN_CLIENT}"


def _iso(epoch: float) -> str:
    stamp = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def rate_limit_headers(result: RateLimitResult, now: Optional[float] = None) -> Dict[str, str]:
    headers = {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(result.remaining),
        "RateLimit-Reset": _iso(result.reset),
    }
    if not result.success:
        now = time.time() if now is None else now
        headers["Retry-After"] = str(max(0, math.ceil(result.reset - now)))
    return headers
