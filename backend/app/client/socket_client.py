import asyncio
import logging
import time
from typing import Any, Callable, List, Optional

import socketio

from app.client.player import Player
from app.client.probe import PROBE_INTERVAL, ConnectionProbe
from app.client.reconciler import Reconciler

logger = logging.getLogger(__name__)

CONTROLLER_TICK = 0.2
PARTICIPANT_TICK = 1.0


class SyncClient:
    """
    Connects a local player to the room over Socket.IO and keeps it
    reconciled with the server's playback state.
    """

    def __init__(self, player: Player, is_controller: bool = False,
                 sio: Optional[socketio.AsyncClient] = None,
                 on_controller_left: Optional[Callable[[], Any]] = None):
        self.sio = sio or socketio.AsyncClient(reconnection_attempts=5, reconnection_delay=1)
        self.player = player
        self.is_controller = is_controller
        self.reconciler = Reconciler(player, self._enqueue, is_controller=is_controller)
        player.on_state_change = self.reconciler.on_player_state
        self.probe = ConnectionProbe()
        self.on_controller_left = on_controller_left
        self.queue: List[dict] = []
        self.roster: dict = {}
        self.messages: List[dict] = []
        self._outbox: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

        handlers = {
            "connect": self._on_connect,
            "init_state": self.reconciler.on_snapshot,
            "sync_state": self.reconciler.on_snapshot,
            "play": self.reconciler.on_play,
            "pause": self.reconciler.on_pause,
            "seek": self.reconciler.on_seek,
            "temporary_seek": self.reconciler.on_temporary_seek,
            "change_media": self.reconciler.on_change_media,
            "update_queue": self._on_queue,
            "roster_update": self._on_roster,
            "chat_message": self._on_message,
            "server_message": self._on_server_message,
            "controller_left": self._on_controller_left,
            "latency_reply": self._on_latency_reply,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    def _enqueue(self, event: str, *args):
        self._outbox.put_nowait((event, args[0] if args else None))

    async def _sender(self):
        while True:
            event, data = await self._outbox.get()
            try:
                await self.sio.emit(event, data)
            except Exception as e:
                logger.warning(f"Failed to send {event}: {e}")

    async def _ticker(self):
        interval = CONTROLLER_TICK if self.is_controller else PARTICIPANT_TICK
        next_probe = time.monotonic() + PROBE_INTERVAL
        while True:
            await asyncio.sleep(interval)
            self.reconciler.tick()
            if time.monotonic() >= next_probe:
                next_probe = time.monotonic() + PROBE_INTERVAL
                self.probe.check_timeouts()
                self._enqueue("latency_probe", self.probe.start())

    async def connect(self, url: str, token: str):
        await self.sio.connect(url, auth={"token": token}, transports=["websocket", "polling"])
        self._tasks = [asyncio.create_task(self._sender()), asyncio.create_task(self._ticker())]

    async def disconnect(self):
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        await self.sio.disconnect()

    async def wait(self):
        await self.sio.wait()

    # Outbound helpers for UI actions that don't come from the player

    def change_media(self, media_id: str, title: str = None):
        self._enqueue("change_media", {"id": media_id, "title": title})

    def add_to_queue(self, media_id: str, title: str = None, thumbnail: str = None):
        self._enqueue("add_to_queue", {"id": media_id, "title": title, "thumbnail": thumbnail})

    def remove_from_queue(self, index: int):
        self._enqueue("remove_from_queue", index)

    def reorder_queue(self, old_index: int, new_index: int):
        self._enqueue("reorder_queue", {"old_index": old_index, "new_index": new_index})

    def play_next(self):
        self._enqueue("play_next_in_queue")

    def set_display_name(self, name: str):
        self._enqueue("set_display_name", name)

    def send_chat(self, text: str):
        self._enqueue("chat_message", text)

    # Inbound bookkeeping

    def _on_connect(self):
        logger.info("Connected, requesting sync")
        self._enqueue("request_sync")

    def _on_queue(self, entries):
        self.queue = list(entries or [])

    def _on_roster(self, roster):
        self.roster = roster or {}

    def _on_message(self, message):
        self.messages.append(message)

    def _on_server_message(self, message):
        if message.get("is_heartbeat"):
            self._enqueue("heartbeat_ack")
            return
        self.messages.append(message)

    def _on_controller_left(self, *args):
        logger.warning("Admin has left the room. You will be disconnected soon.")
        if self.on_controller_left:
            self.on_controller_left()

    def _on_latency_reply(self, data):
        self.probe.on_reply((data or {}).get("token"))
