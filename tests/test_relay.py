import asyncio
import json

import pytest
from starlette.websockets import WebSocketDisconnect

from backend import MS_PER_HOUR
from conftest import StubWebSocket
from relay import ConnectionState, RelayConnection, RoomRelay


def _expect_close(ws, reason, code=1008):
    with pytest.raises(WebSocketDisconnect) as exc:
        ws.receive_text()
    assert exc.value.code == code
    assert exc.value.reason == reason


def _connections(client):
    return client.get("/health").json()["connections"]


def test_signaling_relays_to_peers_without_echo(client, make_room, make_token):
    room_id = make_room()
    token = make_token(room_id)
    url = f"/signaling?roomId={room_id}&token={token}"
    offer = json.dumps({"type": "offer"})

    with client.websocket_connect(url) as peer_a, client.websocket_connect(url) as peer_b:
        assert _connections(client) == 2

        peer_a.send_text(offer)
        assert peer_b.receive_text() == offer

        # A got nothing back: the first frame it sees is B's reply, not its own offer
        answer = json.dumps({"type": "answer"})
        peer_b.send_text(answer)
        assert peer_a.receive_text() == answer


def test_signaling_fans_out_to_every_other_peer(client, make_room, make_token):
    room_id = make_room()
    url = f"/signaling?roomId={room_id}&token={make_token(room_id)}"

    with client.websocket_connect(url) as a, client.websocket_connect(url) as b, client.websocket_connect(url) as c:
        a.send_text('{"type":"candidate"}')
        assert b.receive_text() == '{"type":"candidate"}'
        assert c.receive_text() == '{"type":"candidate"}'


def test_signaling_resends_binary_as_text(client, make_room, make_token):
    room_id = make_room()
    url = f"/signaling?roomId={room_id}&token={make_token(room_id)}"

    with client.websocket_connect(url) as a, client.websocket_connect(url) as b:
        a.send_bytes(b'{"type":"offer"}')
        assert b.receive_text() == '{"type":"offer"}'


def test_rooms_are_isolated(client, make_room, make_token):
    room_x, room_y = make_room(), make_room()
    url_x = f"/signaling?roomId={room_x}&token={make_token(room_x)}"
    url_y = f"/signaling?roomId={room_y}&token={make_token(room_y)}"

    with client.websocket_connect(url_x) as x1, client.websocket_connect(url_y) as y1, client.websocket_connect(url_x) as x2:
        y1.send_text("for y only")
        x1.send_text("for x only")
        assert x2.receive_text() == "for x only"


def test_sync_relay_forwards_bytes_unchanged(client, make_room, make_token):
    room_id = make_room()
    token = make_token(room_id)
    update = bytes([0, 1, 2, 255, 128])

    with client.websocket_connect(f"/yjs/{room_id}?token={token}") as a, client.websocket_connect(
        f"/yjs?room={room_id}&token={token}"
    ) as b:
        a.send_bytes(update)
        assert b.receive_bytes() == update

        b.send_text("text frame")
        assert a.receive_bytes() == b"text frame"


def test_sync_room_id_is_last_path_segment(client, make_room, make_token):
    room_id = make_room()
    with client.websocket_connect(f"/yjs/workspace/{room_id}?token={make_token(room_id)}"):
        assert _connections(client) == 1


def test_relays_are_independent(client, make_room, make_token):
    room_id = make_room()
    token = make_token(room_id)

    with client.websocket_connect(f"/signaling?roomId={room_id}&token={token}") as signaling, client.websocket_connect(
        f"/yjs/{room_id}?token={token}"
    ) as sync_a, client.websocket_connect(f"/yjs/{room_id}?token={token}") as sync_b:
        signaling.send_text("signal")
        sync_a.send_bytes(b"sync")
        assert sync_b.receive_bytes() == b"sync"
        assert _connections(client) == 3


@pytest.mark.parametrize(
    "url, reason",
    [
        ("/signaling", "Missing roomId"),
        ("/signaling?roomId=NOPE0000&token=x", "Room not found"),
        ("/yjs/", "Missing roomId"),
        ("/yjs", "Missing roomId"),
        ("/yjs/NOPE0000?token=x", "Room not found"),
    ],
)
def test_rejects_missing_or_unknown_room(client, url, reason):
    with client.websocket_connect(url) as ws:
        _expect_close(ws, reason)
    assert _connections(client) == 0


@pytest.mark.parametrize("relay_url", ["/signaling?roomId={room}&token={token}", "/yjs/{room}?token={token}"])
def test_rejects_token_for_another_room(client, make_room, make_token, relay_url):
    room_x, room_y = make_room(), make_room()
    token_x = make_token(room_x)

    with client.websocket_connect(relay_url.format(room=room_y, token=token_x)) as ws:
        _expect_close(ws, "Invalid token")
    assert _connections(client) == 0


@pytest.mark.parametrize("token", ["", "garbage"])
def test_rejects_missing_or_bad_token(client, make_room, token):
    room_id = make_room()
    with client.websocket_connect(f"/signaling?roomId={room_id}&token={token}") as ws:
        _expect_close(ws, "Invalid token")


def test_expired_room_rejected_by_signaling_only(client, clock, make_room, make_token):
    room_id = make_room(ttl=1)
    token = make_token(room_id)
    clock.advance(MS_PER_HOUR + 1)

    with client.websocket_connect(f"/signaling?roomId={room_id}&token={token}") as ws:
        _expect_close(ws, "Room expired")

    # The sync relay only checks that the room is still registered
    with client.websocket_connect(f"/yjs/{room_id}?token={token}"):
        assert _connections(client) == 1


def test_unknown_websocket_path_is_refused(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/elsewhere"):
            pass


def _admitted(relay, room_id, websocket):
    connection = RelayConnection(websocket, relay.name)
    connection.room_id = room_id
    connection.state = ConnectionState.ADMITTED
    relay.add(connection)
    return connection


def test_failed_peer_does_not_block_others():
    relay = RoomRelay("signaling", log_prefix="WS", binary=False, check_expiry=True)
    sender = _admitted(relay, "ROOM", StubWebSocket())
    broken = _admitted(relay, "ROOM", StubWebSocket(fail_on_send=True))
    healthy = _admitted(relay, "ROOM", StubWebSocket())

    delivered = asyncio.run(relay.broadcast(sender, b"hello"))

    assert delivered == 1
    assert healthy.websocket.sent == ["hello"]
    assert sender.websocket.sent == []
    assert broken.websocket.closed_with is not None
    assert relay.room_size("ROOM") == 2


def test_binary_relay_normalizes_to_bytes():
    relay = RoomRelay("yjs", log_prefix="YJS_WS", binary=True, check_expiry=False)
    assert relay.normalize("abc") == b"abc"
    assert relay.normalize(b"\x00\xff") == b"\x00\xff"


def test_remove_unknown_connection_is_noop():
    relay = RoomRelay("yjs", log_prefix="YJS_WS", binary=True, check_expiry=False)
    connection = RelayConnection(StubWebSocket(), relay.name)
    assert relay.remove(connection) is False
    assert relay.connection_count() == 0


def _serve_signaling(service, websocket):
    room = service.backend.create_room(1)
    token = service.codec.issue(room.id).token
    asyncio.run(service.hub.serve(service.hub.signaling, websocket, room.id, token))


def test_normal_disconnect_closes_with_1000(service):
    websocket = StubWebSocket(incoming=[{"type": "websocket.receive", "text": "hi"}])
    _serve_signaling(service, websocket)

    assert websocket.closed_with == (1000, "")
    assert service.connection_count() == 0


def test_server_fault_closes_with_1011(service):
    websocket = StubWebSocket(incoming=[RuntimeError("relay loop failed")])
    _serve_signaling(service, websocket)

    assert websocket.closed_with == (1011, "")
    assert service.connection_count() == 0
