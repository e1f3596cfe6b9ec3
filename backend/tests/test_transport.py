import pytest

from app.services.transport import SocketIOTransport, Transport

pytestmark = pytest.mark.anyio


class FakeServer:
    def __init__(self):
        self.calls = []

    async def enter_room(self, sid, room):
        self.calls.append(("enter_room", sid, room))

    async def emit(self, event, data=None, **kwargs):
        self.calls.append(("emit", event, data, kwargs))

    async def disconnect(self, sid):
        self.calls.append(("disconnect", sid))


async def test_direct_and_room_emits():
    server = FakeServer()
    transport = SocketIOTransport(server)

    await transport.enter("a")
    await transport.emit("pause", {"time": 1.0}, to="a")
    await transport.emit("play", {"time": 1.0})
    await transport.disconnect("a")

    assert server.calls == [
        ("enter_room", "a", "room"),
        ("emit", "pause", {"time": 1.0}, {"to": "a"}),
        ("emit", "play", {"time": 1.0}, {"to": "room"}),
        ("disconnect", "a"),
    ]


async def test_transport_must_implement_disconnect():
    class EmitOnly(Transport):
        async def emit(self, event, data=None, to=None):
            pass

    with pytest.raises(TypeError):
        EmitOnly()
