from abc import ABC, abstractmethod
from typing import Any, Optional

import socketio

ROOM_NAME = "room"


class Transport(ABC):
    """Outbound side of the router: what gets sent to whom."""

    @abstractmethod
    async def emit(self, event: str, data: Any = None, to: Optional[str] = None):
        """Send to one connection, or to the whole room when `to` is None."""

    @abstractmethod
    async def disconnect(self, sid: str):
        ...


class SocketIOTransport(Transport):
    def __init__(self, sio: socketio.AsyncServer, room: str = ROOM_NAME):
        self.sio = sio
        self.room = room

    async def enter(self, sid: str):
        await self.sio.enter_room(sid, self.room)

    async def emit(self, event, data=None, to=None):
        await self.sio.emit(event, data, to=to if to is not None else self.room)

    async def disconnect(self, sid):
        await self.sio.disconnect(sid)
