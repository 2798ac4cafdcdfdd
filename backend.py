import math
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from clock import Clock, now_ms
from constants import DEFAULT_CREATOR_NAME, MAX_ROOM_TTL_HOURS, ROOM_ID_LENGTH
from logging_config import get_logger
from token_codec import generate_secure_random

logger = get_logger(__name__)

MS_PER_HOUR = 60 * 60 * 1000


@dataclass(frozen=True)
class Room:
    id: str
    created_at: int
    expires_at: int
    creator: str

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def public_view(self) -> dict:
        return {
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "creator": self.creator,
        }


class RoomBackend:
    """
    In-memory room registry. Rooms live only as long as the process.

    All access goes through one lock; critical sections are plain dict
    operations, so readers never see a half-created room.
    """

    def __init__(self, max_ttl_hours: float = MAX_ROOM_TTL_HOURS, clock: Clock = now_ms):
        self.max_ttl_hours = max_ttl_hours
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()
        logger.info(f"Initializing RoomBackend (max ttl {max_ttl_hours}h)")

    def _generate_room_id(self) -> str:
        # Caller holds the lock. 36**8 ids keeps the retry loop short.
        while True:
            room_id = generate_secure_random(ROOM_ID_LENGTH)
            if room_id not in self._rooms:
                return room_id

    def create_room(self, ttl_hours: float, creator_name: Optional[str] = None) -> Room:
        if isinstance(ttl_hours, bool) or not isinstance(ttl_hours, (int, float)) or not math.isfinite(ttl_hours):
            raise ValueError("ttl must be a number of hours")
        ttl_ms = int(ttl_hours * MS_PER_HOUR)
        if ttl_ms <= 0 or ttl_hours > self.max_ttl_hours:
            raise ValueError(f"ttl must be within (0, {self.max_ttl_hours}] hours")

        now = self._clock()
        with self._lock:
            room = Room(
                id=self._generate_room_id(),
                created_at=now,
                expires_at=now + ttl_ms,
                creator=creator_name or DEFAULT_CREATOR_NAME,
            )
            self._rooms[room.id] = room
        logger.info(f"Created room {room.id}, expires at {room.expires_at}")
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        """Pure lookup. Expired rooms are returned until the sweep removes them."""
        if not room_id:
            return None
        with self._lock:
            return self._rooms.get(room_id)

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def sweep_expired(self) -> List[str]:
        """Remove every room past its expiry. Returns the removed room ids."""
        now = self._clock()
        with self._lock:
            expired = [room_id for room_id, room in self._rooms.items() if room.is_expired(now)]
            for room_id in expired:
                del self._rooms[room_id]
        for room_id in expired:
            logger.info(f"Swept expired room {room_id}")
        return expired
