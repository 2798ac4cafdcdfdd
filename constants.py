import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 9001))

SERVER_NAME = os.getenv("SERVER_NAME", "Strange Room Signaling Server")
SERVER_VERSION = os.getenv("SERVER_VERSION", "3.0.0")

# Shared HMAC key for access tokens. The fallback is public and therefore insecure:
# always set TOKEN_SECRET outside of local development.
DEFAULT_TOKEN_SECRET = "strange-room-secret-change-in-production"
TOKEN_SECRET = os.getenv("TOKEN_SECRET", DEFAULT_TOKEN_SECRET)

TOKEN_EXPIRY_SECONDS = int(os.getenv("TOKEN_EXPIRY_SECONDS", 30 * 24 * 60 * 60))  # 30 days
DEFAULT_ROOM_TTL_HOURS = float(os.getenv("DEFAULT_ROOM_TTL_HOURS", 48))
MAX_ROOM_TTL_HOURS = float(os.getenv("MAX_ROOM_TTL_HOURS", 48))

MAX_REQUESTS_PER_MINUTE = int(os.getenv("MAX_REQUESTS_PER_MINUTE", 60))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 60))

CLEANUP_INTERVAL_SECONDS = float(os.getenv("CLEANUP_INTERVAL_SECONDS", 60))
SHUTDOWN_TIMEOUT_SECONDS = float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", 5))

ROOM_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_ID_LENGTH = 8
NONCE_LENGTH = 16

DEFAULT_CREATOR_NAME = "Unknown"

# WebSocket close codes
WS_NORMAL_CLOSURE = 1000
WS_GOING_AWAY = 1001
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011
