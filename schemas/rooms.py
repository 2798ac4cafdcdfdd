from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    ttl: Optional[float] = None  # hours
    creatorName: Optional[str] = None

class CreateRoomResponse(BaseModel):
    success: bool = True
    roomId: str
    expiresAt: int

class RoomInfo(BaseModel):
    createdAt: int
    expiresAt: int
    creator: str

class CheckRoomResponse(BaseModel):
    exists: bool
    room: Optional[RoomInfo] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
