import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

from clock import Clock, now_ms
from constants import NONCE_LENGTH, ROOM_ID_ALPHABET, TOKEN_EXPIRY_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)

TOKEN_SEPARATOR = "|"

REASON_MISSING = "Missing token"
REASON_FORMAT = "Invalid token format"
REASON_EXPIRED = "Token expired"
REASON_SIGNATURE = "Invalid signature"
REASON_INVALID = "Invalid token"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: int


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    room_id: Optional[str] = None
    reason: Optional[str] = None


def generate_secure_random(length: int, alphabet: str = ROOM_ID_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class TokenCodec:
    """
    Issues and verifies self-contained room access tokens.

    Wire form: base64("roomId|expiresAt|nonce|hexHmacSha256(roomId|expiresAt|nonce)").
    Nothing is stored server side, so any instance sharing the secret can
    validate any token. Tokens are never revoked; they lapse at expiresAt.
    """

    def __init__(self, secret: str, ttl_seconds: int = TOKEN_EXPIRY_SECONDS, clock: Clock = now_ms):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.ttl_ms = int(ttl_seconds * 1000)
        self._clock = clock

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, room_id: str) -> IssuedToken:
        if not room_id:
            raise ValueError("room_id is required")
        if TOKEN_SEPARATOR in room_id:
            raise ValueError(f"room_id must not contain {TOKEN_SEPARATOR!r}")

        expires_at = self._clock() + self.ttl_ms
        nonce = generate_secure_random(NONCE_LENGTH)
        payload = TOKEN_SEPARATOR.join((room_id, str(expires_at), nonce))
        raw = f"{payload}{TOKEN_SEPARATOR}{self._sign(payload)}"
        token = base64.b64encode(raw.encode("utf-8")).decode("ascii")
        logger.debug(f"Issued token {token[:16]}... for room {room_id}")
        return IssuedToken(token=token, expires_at=expires_at)

    def validate(self, token: Optional[str]) -> TokenValidation:
        """Check a token. Never raises: every failure is reported as valid=False with a reason."""
        if not token:
            return TokenValidation(valid=False, reason=REASON_MISSING)
        if not isinstance(token, str):
            return TokenValidation(valid=False, reason=REASON_INVALID)

        try:
            raw = base64.b64decode(token).decode("utf-8")
        except (binascii.Error, ValueError):
            return TokenValidation(valid=False, reason=REASON_FORMAT)

        parts = raw.split(TOKEN_SEPARATOR)
        if len(parts) != 4:
            return TokenValidation(valid=False, reason=REASON_FORMAT)

        room_id, expires_at, nonce, signature = parts
        try:
            expiry_time = int(expires_at)
        except ValueError:
            return TokenValidation(valid=False, reason=REASON_FORMAT)

        if self._clock() > expiry_time:
            return TokenValidation(valid=False, reason=REASON_EXPIRED)

        # Recompute over the fields exactly as carried, then compare in constant time
        expected = self._sign(TOKEN_SEPARATOR.join((room_id, expires_at, nonce)))
        if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
            return TokenValidation(valid=False, reason=REASON_SIGNATURE)

        return TokenValidation(valid=True, room_id=room_id)
