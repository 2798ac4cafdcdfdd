from typing import Optional

from fastapi import APIRouter, Query, WebSocket
from service import get_service

relay_router = APIRouter(tags=["relay"])


@relay_router.websocket("/signaling")
async def signaling_endpoint(
    websocket: WebSocket,
    room_id: Optional[str] = Query(None, alias="roomId"),
    token: Optional[str] = Query(None),
):
    """WebRTC signaling relay. JSON messages are forwarded to the other peers as text frames.

    Query parameters:
    - roomId: room to join
    - token: access token issued for that room
    """
    hub = get_service(websocket).hub
    await hub.serve(hub.signaling, websocket, room_id, token)


@relay_router.websocket("/yjs")
async def sync_endpoint_query(
    websocket: WebSocket,
    room_id: Optional[str] = Query(None, alias="room"),
    token: Optional[str] = Query(None),
):
    """Document sync relay addressed as /yjs?room=<id>&token=<token>."""
    hub = get_service(websocket).hub
    await hub.serve(hub.sync, websocket, room_id, token)


@relay_router.websocket("/yjs/{path:path}")
async def sync_endpoint(websocket: WebSocket, path: str, token: Optional[str] = Query(None)):
    """Document sync relay addressed as /yjs/<id>?token=<token>. Binary frames are forwarded unchanged."""
    # Clients may prefix the room with their own segments; the room id is the last one
    room_id = path.split("/")[-1]
    hub = get_service(websocket).hub
    await hub.serve(hub.sync, websocket, room_id, token)
