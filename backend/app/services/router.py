import asyncio
import logging
import math
import time
from typing import Any, Optional

from app import config
from app.models.room import Participant, QueueEntry, Role
from app.models.user import VerifiedCredential
from app.services import decisions
from app.services.decisions import Outcome
from app.services.privilege import ConnectionRejected, PrivilegeAuthority
from app.services.queue import QueueManager
from app.services.ratelimit import MinIntervalGate
from app.services.scheduler import Scheduler
from app.services.session import SessionStore
from app.services.transport import Transport

logger = logging.getLogger(__name__)

ROOM_OWNER = "room"


def coerce_time(value: Any) -> Optional[float]:
    """Playback offsets arrive as JSON numbers; anything else is ignored."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    if not math.isfinite(value):
        return None
    return max(0.0, value)


def sanitize_display_name(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    sanitized = name.strip()[:config.DISPLAY_NAME_MAX_LENGTH]
    return sanitized or None


def placeholder_name(sid: str) -> str:
    return f"User-{sid[:5]}"


class EventRouter:
    """
    Applies inbound room events: checks authority, mutates the session
    store and decides what goes to whom.

    Every operation runs under one lock so mutations are applied in receipt
    order and their broadcasts leave in the same order.
    """

    def __init__(
        self,
        store: SessionStore,
        authority: PrivilegeAuthority,
        queue: QueueManager,
        transport: Transport,
        scheduler: Optional[Scheduler] = None,
        play_debounce: float = config.SYNC_DEBOUNCE_SECONDS,
        initial_sync_delay: float = config.INITIAL_SYNC_DELAY,
        controller_sync_delay: float = config.CONTROLLER_SYNC_DELAY,
        seek_resync_delay: float = config.SEEK_RESYNC_DELAY,
        teardown_delay: float = config.TEARDOWN_DELAY,
    ):
        self.store = store
        self.authority = authority
        self.queue = queue
        self.transport = transport
        self.scheduler = scheduler or Scheduler()
        self.gate = MinIntervalGate({"play": play_debounce}, clock=store.now)
        self.initial_sync_delay = initial_sync_delay
        self.controller_sync_delay = controller_sync_delay
        self.seek_resync_delay = seek_resync_delay
        self.teardown_delay = teardown_delay
        self._lock = asyncio.Lock()

    # Outbound helpers

    def _playback_payload(self, time_: float, origin_is_controller: bool, force: bool = False) -> dict:
        return {
            "time": time_,
            "server_timestamp": self.store.now(),
            "origin_is_controller": origin_is_controller,
            "force": force,
            "controller_has_started_playback": self.store.playback.controller_has_started_playback,
        }

    async def _broadcast(self, event: str, data: Any = None):
        await self.transport.emit(event, data)

    async def _reply(self, sid: str, event: str, data: Any = None):
        await self.transport.emit(event, data, to=sid)

    async def _send_snapshot(self, sid: str, event: str = "sync_state", force: bool = False):
        await self._reply(sid, event, self.store.snapshot(for_sid=sid, force=force).model_dump())

    async def _server_message(self, message: str, **extra):
        await self._broadcast("server_message", {"message": message, "timestamp": self.store.now(), **extra})

    async def _broadcast_roster(self):
        await self._broadcast("roster_update", self.store.roster())

    async def _broadcast_queue(self):
        await self._broadcast("update_queue", self.queue.as_payload())

    # Connection lifecycle

    async def connect(self, sid: str, credential: VerifiedCredential) -> Participant:
        role = Role.CONTROLLER if credential.is_controller_eligible else Role.REGULAR
        async with self._lock:
            decision = self.authority.admit(role, credential.identity)
            if not decision.allowed:
                raise ConnectionRejected(decision.reason)

            now = self.store.now()
            participant = self.store.add_participant(Participant(
                connection_id=sid,
                identity=credential.identity,
                display_name=sanitize_display_name(credential.identity) or placeholder_name(sid),
                role=role,
                joined_at=now,
                last_activity=now,
            ))
            occupancy = self.store.occupancy()
            logger.info(
                f"Connection count: {occupancy.total}/{self.authority.max_connections} "
                f"(Admins: {occupancy.controllers}, Users: {occupancy.regulars})"
            )

            # The client only accepts events once the handshake has completed
            self.scheduler.call_later(0, lambda: self._welcome(sid), owner=sid)
            self.scheduler.call_later(self.initial_sync_delay, lambda: self._initial_sync(sid), owner=sid)
            if role == Role.CONTROLLER:
                self.scheduler.call_later(self.controller_sync_delay, lambda: self._controller_sync(sid), owner=sid)
            return participant

    async def _welcome(self, sid: str):
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant:
                return
            await self._send_snapshot(sid, "init_state")
            suffix = " (Admin)" if participant.is_controller else ""
            await self._server_message(f"{participant.display_name}{suffix} has joined the room.")
            await self._broadcast_roster()

    async def _initial_sync(self, sid: str):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            await self._send_snapshot(sid)

    async def _controller_sync(self, sid: str):
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant or not participant.is_controller:
                return
            logger.info(f"Forcing room sync after controller {sid} joined")
            state = self.store.resync()
            snapshot = self.store.snapshot(force=True).model_dump()
            await self._broadcast("sync_state", snapshot)
            if state.is_playing:
                await self._broadcast("play", self._playback_payload(state.position_seconds, True, force=True))

    async def disconnect(self, sid: str):
        async with self._lock:
            self.scheduler.cancel_owner(sid)
            participant = self.store.remove_participant(sid)
            if not participant:
                return
            occupancy = self.store.occupancy()
            logger.info(
                f"User disconnected: {participant.display_name} ({sid}), was admin: {participant.is_controller}. "
                f"Connection count: {occupancy.total}/{self.authority.max_connections}"
            )

            if participant.is_controller:
                await self._server_message(f"Admin {participant.display_name} has left. Room will close.")
                await self._broadcast("controller_left")
                self.scheduler.call_later(self.teardown_delay, self._teardown, owner=ROOM_OWNER)

            if occupancy.total == self.authority.max_connections - 1:
                await self._server_message("A connection slot is now available.")

            await self._broadcast_roster()
            suffix = " (Admin)" if participant.is_controller else ""
            await self._server_message(f"{participant.display_name}{suffix} has left the room.")

    async def _teardown(self):
        async with self._lock:
            remaining = [p.connection_id for p in self.store.participants()]
            self.gate.reset()
        logger.info(f"Closing room, disconnecting {len(remaining)} participant(s)")
        # Outside the lock: the transport calls back into disconnect()
        for sid in remaining:
            await self.transport.disconnect(sid)

    # Playback control

    async def play(self, sid: str, requested_time: Any):
        time_ = coerce_time(requested_time)
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant or time_ is None:
                return
            outcome = decisions.decide_play(self.store.playback, participant.role)
            logger.info(f"Play at {time_} from {sid} (Admin: {participant.is_controller}) -> {outcome.value}")

            if outcome == Outcome.REJECT_WITH_PAUSE:
                position = self.store.compute_extrapolated_position()
                payload = self._playback_payload(position, False)
                payload["message"] = "Waiting for admin to start video first"
                await self._reply(sid, "pause", payload)
                await self._send_snapshot(sid)
                return

            by_controller = outcome == Outcome.ACCEPT_FORCED
            self.store.apply_mutation(lambda s: decisions.apply_play(s, time_, by_controller))

            if by_controller:
                self.gate.mark("play")
                await self._broadcast("play", self._playback_payload(time_, True, force=True))
            elif self.gate.allow("play"):
                await self._broadcast("play", self._playback_payload(time_, False))

    async def pause(self, sid: str, requested_time: Any):
        time_ = coerce_time(requested_time)
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant or time_ is None:
                return
            outcome = decisions.decide_pause(participant.role, self.store.controller_present)
            logger.info(f"Pause at {time_} from {sid} (Admin: {participant.is_controller}) -> {outcome.value}")

            if outcome == Outcome.OVERRIDE_WITH_SNAPSHOT:
                await self._send_snapshot(sid)
                return

            self.store.apply_mutation(lambda s: decisions.apply_pause(s, time_))
            await self._broadcast("pause", self._playback_payload(time_, participant.is_controller))

    async def seek(self, sid: str, requested_time: Any):
        time_ = coerce_time(requested_time)
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant or time_ is None:
                return
            outcome = decisions.decide_seek(participant.role, self.store.controller_present)
            logger.info(f"Seek to {time_} from {sid} (Admin: {participant.is_controller}) -> {outcome.value}")

            if outcome == Outcome.TEMPORARY_SEEK:
                await self._reply(sid, "temporary_seek", time_)
                self.scheduler.call_later(self.seek_resync_delay, lambda: self._corrective_sync(sid), owner=sid)
                return

            self.store.apply_mutation(lambda s: decisions.apply_seek(s, time_))
            await self._broadcast("seek", self._playback_payload(time_, participant.is_controller))

    async def _corrective_sync(self, sid: str):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            await self._send_snapshot(sid)

    # Media and queue

    async def change_media(self, sid: str, data: Any):
        if isinstance(data, str):
            media_id, title = data, "Unknown title"
        elif isinstance(data, dict):
            media_id, title = data.get("id"), data.get("title")
            if not isinstance(title, str) or not title:
                title = "Unknown title"
        else:
            return
        if not isinstance(media_id, str) or not media_id:
            return

        async with self._lock:
            if not self.store.get_participant(sid):
                return
            name = self.store.display_name(sid)
            logger.info(f"Video changed to {media_id} by {sid}")
            await self._load_media(media_id, name, autoplay=False)
            await self._server_message(f"{name} changed the video to: {title}")

    async def _load_media(self, media_id: str, changed_by: str, autoplay: bool):
        self.store.apply_mutation(lambda s: decisions.apply_change_media(s, media_id, autoplay))
        await self._broadcast("change_media", {
            "id": media_id,
            "timestamp": self.store.now(),
            "changed_by_name": changed_by,
            "is_playing": autoplay,
        })

    async def play_next_in_queue(self, sid: str):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            entry = self.queue.pop_next()
            if entry is None:
                return
            name = self.store.display_name(sid)
            logger.info(f"Playing next video: {entry.media_id} (requested by {name})")
            await self._load_media(entry.media_id, name, autoplay=True)
            await self._server_message(f"{name} started playing: {entry.display_title or entry.media_id}")
            await self._broadcast_queue()

    async def add_to_queue(self, sid: str, data: Any):
        if not isinstance(data, dict):
            return
        media_id, title, thumbnail = data.get("id"), data.get("title"), data.get("thumbnail")
        if not isinstance(media_id, str) or not media_id:
            return
        if not isinstance(title, str):
            title = None
        if not isinstance(thumbnail, str):
            thumbnail = None
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            name = self.store.display_name(sid)
            entry = QueueEntry(
                media_id=media_id,
                display_title=title or "Unknown title",
                thumbnail_ref=thumbnail or None,
                added_by_display_name=name,
            )
            self.queue.add(entry)
            logger.info(f"Video added to queue: {media_id} by {name}")
            await self._broadcast_queue()

    async def remove_from_queue(self, sid: str, index: Any):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            if self.queue.remove(index) is None:
                return
            logger.info(f"Video removed from queue at position {index} by {self.store.display_name(sid)}")
            await self._broadcast_queue()

    async def reorder_queue(self, sid: str, data: Any):
        if not isinstance(data, dict):
            return
        old_index, new_index = data.get("old_index"), data.get("new_index")
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            if self.queue.reorder(old_index, new_index) is None:
                return
            logger.info(
                f"Queue reordered by {self.store.display_name(sid)}: "
                f"moving item from position {old_index} to {new_index}"
            )
            await self._broadcast_queue()

    # Sync, presence and chat

    async def request_sync(self, sid: str):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            self.store.resync()
            await self._send_snapshot(sid)

    async def set_display_name(self, sid: str, name: Any):
        sanitized = sanitize_display_name(name)
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant or sanitized is None:
                return
            participant.display_name = sanitized
            logger.info(f"User {sid} set display name to {sanitized}")
            await self._reply(sid, "display_name_set", sanitized)
            await self._broadcast_roster()

    async def request_roster(self, sid: str):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            await self._broadcast_roster()

    async def chat_message(self, sid: str, text: Any):
        if not isinstance(text, str) or not text.strip():
            return
        async with self._lock:
            participant = self.store.get_participant(sid)
            if not participant:
                return
            await self._broadcast("chat_message", {
                "display_name": participant.display_name,
                "text": text,
                "time": time.strftime("%H:%M:%S", time.localtime(self.store.now())),
                "is_controller": participant.is_controller,
            })

    async def probe(self, sid: str, token: Any = None):
        async with self._lock:
            if not self.store.get_participant(sid):
                return
            await self._reply(sid, "latency_reply", {"token": token, "server_timestamp": self.store.now()})

    async def heartbeat_ack(self, sid: str):
        async with self._lock:
            participant = self.store.get_participant(sid)
            if participant:
                participant.last_activity = self.store.now()

    async def heartbeat(self):
        async with self._lock:
            await self._server_message("ping! i'm still alive", is_heartbeat=True)

    async def announce(self, message: str):
        async with self._lock:
            await self._server_message(message)

    async def shutdown(self):
        self.scheduler.cancel_all()
