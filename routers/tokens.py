from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from schemas.rooms import ErrorResponse
from schemas.tokens import GenerateTokenRequest, GenerateTokenResponse, ValidateTokenRequest, ValidateTokenResponse
from rate_limit import get_client_ip
from service import SignalingService, get_service
from logging_config import get_logger

logger = get_logger(__name__)

tokens_router = APIRouter(prefix="/api/token", tags=["tokens"])


@tokens_router.post("/generate", response_model=GenerateTokenResponse)
async def generate_token(
    body: GenerateTokenRequest,
    request: Request,
    service: SignalingService = Depends(get_service),
):
    # Body: { "roomId": "7HD92FQ1" }
    # Response 200: { "success": true, "token": "<base64>", "expiresAt": 1700000000000 }
    room = service.backend.get_room(body.roomId) if body.roomId else None
    if room is None:
        logger.warning(f"Token request for unknown room {body.roomId} from {get_client_ip(request)}")
        return JSONResponse(status_code=404, content=ErrorResponse(error="Room not found").model_dump())

    issued = service.codec.issue(room.id)
    logger.info(f"Generated token {issued.token[:16]}... for room {room.id}")
    return GenerateTokenResponse(token=issued.token, expiresAt=issued.expires_at)


@tokens_router.post("/validate", response_model=ValidateTokenResponse, response_model_exclude_none=True)
async def validate_token(body: ValidateTokenRequest, service: SignalingService = Depends(get_service)):
    result = service.codec.validate(body.token)
    if not result.valid:
        logger.debug(f"Token validation failed: {result.reason}")
        return ValidateTokenResponse(valid=False, error=result.reason)
    return ValidateTokenResponse(valid=True, roomId=result.room_id)
