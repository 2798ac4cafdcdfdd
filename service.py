import asyncio
from typing import List, Optional

from starlette.requests import HTTPConnection

from backend import RoomBackend
from clock import Clock, now_ms
from constants import (
    CLEANUP_INTERVAL_SECONDS,
    DEFAULT_TOKEN_SECRET,
    MAX_REQUESTS_PER_MINUTE,
    MAX_ROOM_TTL_HOURS,
    RATE_LIMIT_WINDOW_SECONDS,
    TOKEN_EXPIRY_SECONDS,
    TOKEN_SECRET,
)
from logging_config import get_logger
from rate_limit import RateLimiter
from relay import RelayHub
from token_codec import TokenCodec

logger = get_logger(__name__)


class SignalingService:
    """Owns every piece of shared state: rooms, relay connection sets and rate limits."""

    def __init__(
        self,
        secret: str = TOKEN_SECRET,
        token_ttl_seconds: int = TOKEN_EXPIRY_SECONDS,
        max_room_ttl_hours: float = MAX_ROOM_TTL_HOURS,
        max_requests: int = MAX_REQUESTS_PER_MINUTE,
        rate_window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Clock = now_ms,
    ):
        if secret == DEFAULT_TOKEN_SECRET:
            logger.warning("TOKEN_SECRET is not set; using the insecure built-in default")
        self.clock = clock
        self.backend = RoomBackend(max_ttl_hours=max_room_ttl_hours, clock=clock)
        self.codec = TokenCodec(secret, ttl_seconds=token_ttl_seconds, clock=clock)
        self.rate_limiter = RateLimiter(max_requests=max_requests, window_seconds=rate_window_seconds, clock=clock)
        self.hub = RelayHub(self.backend, self.codec, clock=clock)
        self._sweeper: Optional[asyncio.Task] = None

    def connection_count(self) -> int:
        return self.hub.connection_count()

    def sweep_expired(self) -> List[str]:
        """Remove expired rooms and their relay bookkeeping, then prune stale rate-limit entries."""
        removed = self.backend.sweep_expired()
        for room_id in removed:
            self.hub.drop_room(room_id)
        pruned = self.rate_limiter.prune()
        if removed or pruned:
            logger.info(f"Sweep removed {len(removed)} rooms and {pruned} rate-limit entries")
        return removed

    async def run_sweeper(self, interval: float = CLEANUP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_expired()
            except Exception as e:
                logger.error(f"Error during sweep: {e}", exc_info=True)

    def start(self, interval: float = CLEANUP_INTERVAL_SECONDS) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval))
            logger.info(f"Started room sweeper (every {interval}s)")

    async def shutdown(self, timeout: float) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
            logger.debug("Cancelled room sweeper")
        await self.hub.close_all(timeout)
        logger.info("Signaling service stopped")


def get_service(connection: HTTPConnection) -> SignalingService:
    return connection.app.state.service
