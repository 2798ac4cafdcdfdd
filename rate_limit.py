import threading
from dataclasses import dataclass
from typing import Dict

from starlette.requests import HTTPConnection

from clock import Clock, now_ms
from constants import MAX_REQUESTS_PER_MINUTE, RATE_LIMIT_WINDOW_SECONDS


@dataclass
class RateLimitEntry:
    count: int
    reset_time: int


class RateLimiter:
    """Fixed-window request counter keyed by client address."""

    def __init__(
        self,
        max_requests: int = MAX_REQUESTS_PER_MINUTE,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Clock = now_ms,
    ):
        self.max_requests = max_requests
        self.window_ms = int(window_seconds * 1000)
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def allow(self, source_key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(source_key)
            if entry is None or now > entry.reset_time:
                self._entries[source_key] = RateLimitEntry(count=1, reset_time=now + self.window_ms)
                return True

            if entry.count >= self.max_requests:
                return False

            entry.count += 1
            return True

    def prune(self) -> int:
        """Drop entries whose window has ended. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now > entry.reset_time]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def get_client_ip(connection: HTTPConnection) -> str:
    """Best-effort client address: X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = connection.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = connection.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if connection.client and connection.client.host:
        return connection.client.host
    return "unknown"
