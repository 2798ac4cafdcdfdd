import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from app import create_app
from service import SignalingService

START_MS = 1_700_000_000_000


class FakeClock:
    """Callable clock returning epoch ms; advanced by hand in tests."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class StubWebSocket:
    """Stand-in for a connected FastAPI WebSocket that records what it is sent."""

    def __init__(self, fail_on_send: bool = False, incoming=()):
        self.headers = {}
        self.client = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail_on_send = fail_on_send
        self.sent = []
        self.closed_with = None
        self.incoming = list(incoming)

    async def accept(self):
        pass

    async def receive(self):
        message = self.incoming.pop(0) if self.incoming else {"type": "websocket.disconnect"}
        if isinstance(message, BaseException):
            raise message
        return message

    async def send_text(self, data):
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def send_bytes(self, data):
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return SignalingService(secret="test-secret", clock=clock)


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def make_room(client):
    def _make_room(ttl=1):
        response = client.post("/api/room/create", json={"ttl": ttl, "creatorName": "alice"})
        assert response.status_code == 200
        return response.json()["roomId"]

    return _make_room


@pytest.fixture
def make_token(client):
    def _make_token(room_id):
        response = client.post("/api/token/generate", json={"roomId": room_id})
        assert response.status_code == 200
        return response.json()["token"]

    return _make_token
