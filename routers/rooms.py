from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, CheckRoomResponse, ErrorResponse, RoomInfo
from constants import DEFAULT_ROOM_TTL_HOURS
from rate_limit import get_client_ip
from service import SignalingService, get_service
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api/room", tags=["rooms"])


@rooms_router.post("/create", response_model=CreateRoomResponse)
async def create_room(
    room: CreateRoomRequest,
    request: Request,
    service: SignalingService = Depends(get_service),
):
    # Body: { "ttl": 1, "creatorName": "alice" }  (ttl in hours)
    # Response 200: { "success": true, "roomId": "7HD92FQ1", "expiresAt": 1700000000000 }
    client_ip = get_client_ip(request)
    ttl = room.ttl if room.ttl is not None else DEFAULT_ROOM_TTL_HOURS
    logger.info(f"Room creation request from {client_ip}, ttl: {ttl}h, creator: {room.creatorName}")

    try:
        created = service.backend.create_room(ttl, room.creatorName)
    except ValueError as e:
        logger.warning(f"Room creation rejected for {client_ip}: {e}")
        return JSONResponse(status_code=400, content=ErrorResponse(error="Invalid request").model_dump())

    return CreateRoomResponse(roomId=created.id, expiresAt=created.expires_at)


@rooms_router.get("/check/{path:path}", response_model=CheckRoomResponse)
async def check_room(path: str, service: SignalingService = Depends(get_service)):
    """
    Report whether a room exists. Expired rooms still count until the sweep removes them.

    Returns:
    - exists: whether the room is registered
    - room: createdAt / expiresAt / creator, or null
    """
    room_id = path.split("/")[-1]
    room = service.backend.get_room(room_id)
    logger.debug(f"Room check for {room_id}: exists={room is not None}")
    if room is None:
        return CheckRoomResponse(exists=False)
    return CheckRoomResponse(exists=True, room=RoomInfo(**room.public_view()))
