import asyncio
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from backend import RoomBackend
from clock import Clock, now_ms
from constants import WS_GOING_AWAY, WS_INTERNAL_ERROR, WS_NORMAL_CLOSURE, WS_POLICY_VIOLATION
from logging_config import get_logger, log_security_event
from rate_limit import get_client_ip
from token_codec import TokenCodec

logger = get_logger(__name__)

Payload = Union[str, bytes]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    ADMITTING = "admitting"
    ADMITTED = "admitted"
    REJECTED = "rejected"
    CLOSED = "closed"


@dataclass(frozen=True)
class Rejection:
    reason: str  # audit-log reason
    close_reason: str  # sent to the client with close code 1008
    detail: Optional[str] = None


class RelayConnection:
    """One websocket attached to a relay, with its admission state."""

    def __init__(self, websocket: WebSocket, relay_name: str):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.relay_name = relay_name
        self.client_ip = get_client_ip(websocket)
        self.room_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING

    @property
    def is_open(self) -> bool:
        return (
            self.state == ConnectionState.ADMITTED
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, payload: Payload) -> None:
        if isinstance(payload, bytes):
            await self.websocket.send_bytes(payload)
        else:
            await self.websocket.send_text(payload)

    async def close(self, code: int, reason: str = "") -> None:
        if WebSocketState.DISCONNECTED in (self.websocket.application_state, self.websocket.client_state):
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.id}: {e}")

    def __repr__(self) -> str:
        return f"<RelayConnection {self.relay_name}:{self.id[:8]} room={self.room_id} state={self.state.value}>"


class RoomRelay:
    """
    Per-room connection sets for one relay protocol.

    binary relays forward every frame as bytes; text relays re-send every
    frame as a text frame, decoding binary input as UTF-8.
    """

    def __init__(self, name: str, log_prefix: str, binary: bool, check_expiry: bool):
        self.name = name
        self.log_prefix = log_prefix
        self.binary = binary
        self.check_expiry = check_expiry
        self._rooms: Dict[str, Set[RelayConnection]] = {}
        self._lock = threading.Lock()

    def add(self, connection: RelayConnection) -> int:
        with self._lock:
            members = self._rooms.setdefault(connection.room_id, set())
            members.add(connection)
            return len(members)

    def remove(self, connection: RelayConnection) -> bool:
        with self._lock:
            members = self._rooms.get(connection.room_id)
            if not members or connection not in members:
                return False
            members.discard(connection)
            return True

    def peers(self, room_id: str, exclude: Optional[RelayConnection] = None) -> List[RelayConnection]:
        with self._lock:
            members = list(self._rooms.get(room_id, ()))
        return [c for c in members if c is not exclude and c.is_open]

    def room_size(self, room_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(room_id, ()))

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(members) for members in self._rooms.values())

    def all_connections(self) -> List[RelayConnection]:
        with self._lock:
            return [c for members in self._rooms.values() for c in members]

    def drop_room(self, room_id: str) -> None:
        """Forget the room's bookkeeping. Open sockets are left alone."""
        with self._lock:
            self._rooms.pop(room_id, None)

    def normalize(self, payload: Payload) -> Payload:
        if self.binary:
            return payload if isinstance(payload, bytes) else payload.encode("utf-8")
        return payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload

    async def broadcast(self, sender: RelayConnection, payload: Payload) -> int:
        """Send payload to every other open member of the sender's room. Returns the delivery count."""
        data = self.normalize(payload)
        peers = self.peers(sender.room_id, exclude=sender)
        if not peers:
            return 0
        results = await asyncio.gather(*(self._deliver(peer, data) for peer in peers))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"[{self.name}] Forwarded message from {sender.id[:8]} to {delivered}/{len(peers)} peers in room {sender.room_id}")
        return delivered

    async def _deliver(self, peer: RelayConnection, data: Payload) -> bool:
        try:
            await peer.send(data)
            return True
        except Exception as e:
            logger.warning(f"[{self.name}] Error sending to connection {peer.id[:8]} in room {peer.room_id}: {e}")
            self.remove(peer)
            await peer.close(code=WS_GOING_AWAY, reason="Send failed")
            return False


class RelayHub:
    """
    Admits websocket connections into rooms and relays their messages.

    Two independent relays share the hub: a JSON signaling relay (text
    frames, checks room expiry at admission) and a binary document-sync
    relay (opaque bytes, existence check only).
    """

    def __init__(self, backend: RoomBackend, codec: TokenCodec, clock: Clock = now_ms):
        self.backend = backend
        self.codec = codec
        self._clock = clock
        self.signaling = RoomRelay("signaling", log_prefix="WS", binary=False, check_expiry=True)
        self.sync = RoomRelay("yjs", log_prefix="YJS_WS", binary=True, check_expiry=False)
        self.closing = False

    @property
    def relays(self) -> List[RoomRelay]:
        return [self.signaling, self.sync]

    def connection_count(self) -> int:
        return sum(relay.connection_count() for relay in self.relays)

    def drop_room(self, room_id: str) -> None:
        for relay in self.relays:
            relay.drop_room(room_id)

    def admit(self, relay: RoomRelay, room_id: Optional[str], token: Optional[str]) -> Optional[Rejection]:
        """Run the admission checks in order. Returns the first failure, or None when admitted."""
        if not room_id:
            return Rejection("missing_roomId", "Missing roomId")

        room = self.backend.get_room(room_id)
        if room is None:
            return Rejection("room_not_found", "Room not found")

        if relay.check_expiry and room.is_expired(self._clock()):
            return Rejection("room_expired", "Room expired")

        validation = self.codec.validate(token)
        if not validation.valid:
            return Rejection("invalid_token", "Invalid token", detail=validation.reason)
        if validation.room_id != room_id:
            return Rejection("invalid_token", "Invalid token", detail="Room mismatch")

        return None

    async def serve(self, relay: RoomRelay, websocket: WebSocket, room_id: Optional[str], token: Optional[str]) -> None:
        """Drive one connection through admission, relaying and cleanup."""
        connection = RelayConnection(websocket, relay.name)
        logger.info(f"[{relay.name}] Connection request: room={room_id}, ip={connection.client_ip}")

        # Rejections are delivered as close frames, which needs an accepted socket
        try:
            await websocket.accept()
        except Exception as e:
            logger.warning(f"[{relay.name}] Upgrade failed for {connection.client_ip}: {e}")
            connection.state = ConnectionState.CLOSED
            return
        connection.state = ConnectionState.ADMITTING

        if self.closing:
            connection.state = ConnectionState.REJECTED
            await connection.close(code=WS_GOING_AWAY, reason="Server shutting down")
            return

        rejection = self.admit(relay, room_id, token)
        if rejection:
            connection.state = ConnectionState.REJECTED
            details = {"reason": rejection.reason, "roomId": room_id, "ip": connection.client_ip}
            if rejection.detail:
                details["error"] = rejection.detail
            if token and rejection.reason == "invalid_token":
                details["tokenPrefix"] = token[:16]
            log_security_event(f"{relay.log_prefix}_REJECTED", **details)
            await connection.close(code=WS_POLICY_VIOLATION, reason=rejection.close_reason)
            return

        connection.room_id = room_id
        connection.state = ConnectionState.ADMITTED
        members = relay.add(connection)
        log_security_event(f"{relay.log_prefix}_CONNECTED", roomId=room_id, ip=connection.client_ip, connections=members)

        close_code = WS_NORMAL_CLOSURE
        try:
            await self._relay_messages(relay, connection)
        except WebSocketDisconnect:
            logger.info(f"[{relay.name}] Connection {connection.id[:8]} disconnected from room {room_id}")
        except Exception as e:
            logger.error(f"[{relay.name}] Error on connection {connection.id[:8]} in room {room_id}: {e}", exc_info=True)
            close_code = WS_INTERNAL_ERROR
        finally:
            relay.remove(connection)
            connection.state = ConnectionState.CLOSED
            logger.info(f"[{relay.name}] Connection closed: room={room_id}, remaining={relay.room_size(room_id)}")
            await connection.close(code=close_code)

    async def _relay_messages(self, relay: RoomRelay, connection: RelayConnection) -> None:
        while True:
            message = await connection.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            payload = message.get("bytes")
            if payload is None:
                payload = message.get("text")
            if payload is None:
                continue
            await relay.broadcast(connection, payload)

    async def close_all(self, timeout: float) -> None:
        """Close every relay connection, waiting at most `timeout` seconds."""
        self.closing = True
        connections = [c for relay in self.relays for c in relay.all_connections()]
        if not connections:
            return
        logger.info(f"Closing {len(connections)} relay connections")
        try:
            await asyncio.wait_for(
                asyncio.gather(*(c.close(code=WS_GOING_AWAY, reason="Server shutting down") for c in connections)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {timeout}s closing relay connections")
