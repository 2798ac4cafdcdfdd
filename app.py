from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.responses import JSONResponse, Response
from routers.rooms import rooms_router
from routers.tokens import tokens_router
from routers.relay import relay_router
from schemas.health import HealthResponse
from schemas.rooms import ErrorResponse
from service import SignalingService, get_service
from rate_limit import get_client_ip
from constants import (
    CLEANUP_INTERVAL_SECONDS,
    PORT,
    SERVER_NAME,
    SERVER_VERSION,
    SHUTDOWN_TIMEOUT_SECONDS,
)
from logging_config import get_logger, log_security_event, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


def _apply_headers(response: Response) -> Response:
    for name, value in {**CORS_HEADERS, **SECURITY_HEADERS}.items():
        response.headers[name] = value
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    service: SignalingService = app.state.service
    service.start(app.state.cleanup_interval)
    logger.info(f"{SERVER_NAME} v{SERVER_VERSION} listening")
    logger.info(f"HTTP API: http://localhost:{PORT}")
    logger.info(f"WebRTC signaling: ws://localhost:{PORT}/signaling")
    logger.info(f"Yjs sync: ws://localhost:{PORT}/yjs")
    try:
        yield
    finally:
        logger.info("Shutting down, closing relay connections")
        await service.shutdown(app.state.shutdown_timeout)


def create_app(
    service: Optional[SignalingService] = None,
    cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
    shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
) -> FastAPI:
    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION, lifespan=lifespan)
    app.state.service = service or SignalingService()
    app.state.cleanup_interval = cleanup_interval
    app.state.shutdown_timeout = shutdown_timeout

    @app.middleware("http")
    async def http_guard(request: Request, call_next):
        # Websocket upgrades never pass through here, so relays are not rate limited
        if request.method == "OPTIONS":
            return _apply_headers(Response(status_code=200))

        client_ip = get_client_ip(request)
        if not request.app.state.service.rate_limiter.allow(client_ip):
            log_security_event("RATE_LIMIT_EXCEEDED", ip=client_ip, path=request.url.path)
            return _apply_headers(JSONResponse(status_code=429, content={"error": "Too many requests"}))

        response = await call_next(request)
        return _apply_headers(response)

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        # Routes match on method and path together; a wrong method is just an unknown route
        if exc.status_code == 405:
            exc = StarletteHTTPException(status_code=404, detail="Not Found")
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def invalid_request_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content=ErrorResponse(error="Invalid request").model_dump())

    app.include_router(rooms_router)
    app.include_router(tokens_router)
    app.include_router(relay_router)

    @app.get("/", response_model=HealthResponse)
    @app.get("/health", response_model=HealthResponse)
    async def health(service: SignalingService = Depends(get_service)):
        return HealthResponse(
            name=SERVER_NAME,
            version=SERVER_VERSION,
            status="running",
            rooms=service.backend.room_count(),
            connections=service.connection_count(),
        )

    logger.info("FastAPI application initialized")
    return app


app = create_app()
