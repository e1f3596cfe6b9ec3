import asyncio

import pytest

from app.client.player import PlayerState, SimulatedPlayer
from app.client.socket_client import SyncClient

pytestmark = pytest.mark.anyio


class FakeSocket:
    def __init__(self):
        self.handlers = {}
        self.emitted = []
        self.connected_with = None

    def on(self, event, handler):
        self.handlers[event] = handler

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def connect(self, url, auth=None, transports=None):
        self.connected_with = (url, auth)

    async def disconnect(self):
        pass

    def fire(self, event, *args):
        return self.handlers[event](*args)


def _drain(client):
    items = []
    while not client._outbox.empty():
        items.append(client._outbox.get_nowait())
    return items


async def test_registers_server_events():
    sock = FakeSocket()
    SyncClient(SimulatedPlayer(media_id="m1"), sio=sock)

    for event in ("init_state", "sync_state", "play", "pause", "seek", "temporary_seek",
                  "change_media", "update_queue", "roster_update", "controller_left"):
        assert event in sock.handlers


async def test_requests_sync_on_connect():
    sock = FakeSocket()
    client = SyncClient(SimulatedPlayer(media_id="m1"), sio=sock)

    sock.fire("connect")

    assert _drain(client) == [("request_sync", None)]


async def test_heartbeat_is_acknowledged_not_shown():
    sock = FakeSocket()
    client = SyncClient(SimulatedPlayer(media_id="m1"), sio=sock)

    sock.fire("server_message", {"message": "Heartbeat", "is_heartbeat": True})
    sock.fire("server_message", {"message": "bob has joined the room."})

    assert _drain(client) == [("heartbeat_ack", None)]
    assert [m["message"] for m in client.messages] == ["bob has joined the room."]


async def test_queue_and_roster_are_tracked():
    sock = FakeSocket()
    client = SyncClient(SimulatedPlayer(media_id="m1"), sio=sock)

    sock.fire("update_queue", [{"media_id": "a"}])
    sock.fire("roster_update", {"controller": "alice"})

    assert client.queue == [{"media_id": "a"}]
    assert client.roster == {"controller": "alice"}


async def test_controller_left_callback():
    sock = FakeSocket()
    calls = []
    SyncClient(SimulatedPlayer(media_id="m1"), sio=sock, on_controller_left=lambda: calls.append(1))

    sock.fire("controller_left")

    assert calls == [1]


async def test_player_actions_are_sent_in_order():
    sock = FakeSocket()
    player = SimulatedPlayer(media_id="m1")
    client = SyncClient(player, is_controller=True, sio=sock)

    await client.connect("http://room", "tok")
    player.user_play()
    client.send_chat("hi")
    client.reorder_queue(2, 0)
    for _ in range(10):
        await asyncio.sleep(0)
    await client.disconnect()

    assert sock.connected_with == ("http://room", {"token": "tok"})
    assert [event for event, _ in sock.emitted] == ["play", "chat_message", "reorder_queue"]
    assert sock.emitted[2][1] == {"old_index": 2, "new_index": 0}
    assert player.state() == PlayerState.PLAYING
