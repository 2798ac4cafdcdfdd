from pydantic import BaseModel


class HealthResponse(BaseModel):
    name: str
    version: str
    status: str
    rooms: int
    connections: int
