"""
Per-participant playback reconciliation.

Inbound authoritative events are applied to the local player inside a
suppression window, so the state changes they cause are not sent back
upstream. State changes outside that window are treated as the user's own
and are emitted, or reverted when the participant may not make them yet.
"""
import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Optional

from app.client.player import Player, PlayerState

logger = logging.getLogger(__name__)

COMMAND_SETTLE = 0.5
LOAD_SETTLE = 1.0
DRIFT_THRESHOLD = 1.0
SEEK_COALESCE = 0.25
PLAY_PULSE_INTERVAL = 0.5
PAUSE_PULSE_INTERVAL = 1.0


class SuppressionState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    SETTLING = "settling"


class SuppressionGate:
    """
    IDLE -> APPLYING when an inbound command starts (nesting allowed),
    APPLYING -> SETTLING when the outermost command finishes,
    SETTLING -> IDLE once the settle deadline passes.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._depth = 0
        self._settle_until = 0.0

    @property
    def state(self) -> SuppressionState:
        if self._depth > 0:
            return SuppressionState.APPLYING
        if self._clock() < self._settle_until:
            return SuppressionState.SETTLING
        return SuppressionState.IDLE

    @property
    def suppressing(self) -> bool:
        return self.state != SuppressionState.IDLE

    @contextmanager
    def applying(self, settle: float):
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                # A shorter window never cuts a longer one short
                self._settle_until = max(self._settle_until, self._clock() + settle)


class Reconciler:
    def __init__(
        self,
        player: Player,
        emit: Callable[..., Any],
        is_controller: bool = False,
        clock: Callable[[], float] = time.time,
        drift_threshold: float = DRIFT_THRESHOLD,
    ):
        self.player = player
        self.emit = emit
        self.is_controller = is_controller
        self._clock = clock
        self.drift_threshold = drift_threshold
        self.gate = SuppressionGate(clock)
        self.controller_has_started_playback = False
        self.waiting_for_controller = not is_controller
        self._pending_seek_at: Optional[float] = None
        self._last_emit = 0.0

    # Inbound authoritative events

    def _track_latch(self, data: dict):
        if "controller_has_started_playback" in data:
            self.controller_has_started_playback = bool(data["controller_has_started_playback"])
        if self.controller_has_started_playback:
            self.waiting_for_controller = False

    def on_play(self, data: dict):
        if data.get("origin_is_controller"):
            self.controller_has_started_playback = True
        self._track_latch(data)

        with self.gate.applying(COMMAND_SETTLE):
            network_delay = max(0.0, self._clock() - data.get("server_timestamp", self._clock()))
            target = data["time"] + network_delay
            if abs(self.player.current_time() - target) > self.drift_threshold:
                self.player.seek(target)
            self.player.play()

    def on_pause(self, data: dict):
        self._track_latch(data)
        if data.get("message") and not self.is_controller:
            self.waiting_for_controller = True
        with self.gate.applying(COMMAND_SETTLE):
            self.player.seek(data["time"])
            self.player.pause()

    def on_seek(self, data: dict):
        with self.gate.applying(COMMAND_SETTLE):
            self.player.seek(data["time"])

    def on_temporary_seek(self, seconds: float):
        with self.gate.applying(COMMAND_SETTLE):
            self.player.seek(seconds)

    def on_change_media(self, data: dict):
        self.controller_has_started_playback = False
        self.waiting_for_controller = not self.is_controller
        self._pending_seek_at = None
        with self.gate.applying(LOAD_SETTLE):
            self.player.load(data["id"], 0.0)
            if data.get("is_playing"):
                self.player.play()
            else:
                self.player.pause()

    def on_snapshot(self, snapshot: dict):
        """init_state and sync_state: match media, position and play state."""
        self.controller_has_started_playback = bool(snapshot.get("controller_has_started_playback"))
        self.waiting_for_controller = not (self.is_controller or self.controller_has_started_playback)
        self._pending_seek_at = None

        target = snapshot["position_seconds"]
        if snapshot.get("is_playing"):
            target += max(0.0, self._clock() - snapshot.get("server_timestamp", self._clock()))

        with self.gate.applying(LOAD_SETTLE):
            if snapshot["media_id"] != self.player.media_id:
                self.player.load(snapshot["media_id"], target)
            else:
                self.player.seek(target)
            if snapshot.get("is_playing"):
                self.player.play()
            else:
                self.player.pause()

    # Local player changes

    def on_player_state(self, state: PlayerState):
        if self.gate.suppressing:
            return

        now = self._clock()
        self._last_emit = now
        position = self.player.current_time()

        if state == PlayerState.PLAYING:
            if not self.is_controller and not self.controller_has_started_playback:
                logger.info("Cannot play until admin starts playback")
                self.waiting_for_controller = True
                with self.gate.applying(COMMAND_SETTLE):
                    self.player.pause()
                return
            self.emit("play", position)
        elif state == PlayerState.PAUSED:
            self.emit("pause", position)
        elif state == PlayerState.ENDED:
            if self.is_controller:
                self.emit("play_next_in_queue")
        elif state == PlayerState.BUFFERING:
            self._pending_seek_at = now + SEEK_COALESCE

    def tick(self):
        """Called periodically: flushes a coalesced seek and sends the controller pulse."""
        now = self._clock()

        if self._pending_seek_at is not None and now >= self._pending_seek_at:
            self._pending_seek_at = None
            if not self.gate.suppressing:
                self._last_emit = now
                self.emit("seek", self.player.current_time())
                return

        if not self.is_controller or self.gate.suppressing:
            return

        state = self.player.state()
        if state == PlayerState.PLAYING and now - self._last_emit > PLAY_PULSE_INTERVAL:
            self._last_emit = now
            self.emit("play", self.player.current_time())
        elif state == PlayerState.PAUSED and now - self._last_emit > PAUSE_PULSE_INTERVAL:
            self._last_emit = now
            self.emit("pause", self.player.current_time())
