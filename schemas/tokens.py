from pydantic import BaseModel
from typing import Optional


class GenerateTokenRequest(BaseModel):
    roomId: Optional[str] = None

class GenerateTokenResponse(BaseModel):
    success: bool = True
    token: str
    expiresAt: int

class ValidateTokenRequest(BaseModel):
    token: Optional[str] = None

class ValidateTokenResponse(BaseModel):
    valid: bool
    roomId: Optional[str] = None
    error: Optional[str] = None
