import time
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Callable, Optional


class PlayerState(IntEnum):
    # Same numbering as the YouTube IFrame API
    UNSTARTED = -1
    ENDED = 0
    PLAYING = 1
    PAUSED = 2
    BUFFERING = 3


class Player(ABC):
    """What the reconciler needs from a local video surface."""

    media_id: Optional[str] = None
    on_state_change: Optional[Callable[[PlayerState], None]] = None

    @abstractmethod
    def current_time(self) -> float:
        ...

    @abstractmethod
    def state(self) -> PlayerState:
        ...

    @abstractmethod
    def seek(self, seconds: float):
        ...

    @abstractmethod
    def play(self):
        ...

    @abstractmethod
    def pause(self):
        ...

    @abstractmethod
    def load(self, media_id: str, start: float = 0.0):
        ...


class SimulatedPlayer(Player):
    """
    Headless player that advances with the clock and reports state changes
    the way a browser player does, including the ones caused by commands.
    """

    def __init__(self, clock: Callable[[], float] = time.time, media_id: Optional[str] = None,
                 duration: Optional[float] = None):
        self._clock = clock
        self.media_id = media_id
        self.duration = duration
        self._state = PlayerState.UNSTARTED
        self._position = 0.0
        self._anchor = clock()
        self.on_state_change: Optional[Callable[[PlayerState], None]] = None
        self.commands = []

    def _set_state(self, state: PlayerState):
        self._position = self.current_time()
        self._anchor = self._clock()
        changed = state != self._state
        self._state = state
        if changed and self.on_state_change:
            self.on_state_change(state)

    def current_time(self) -> float:
        if self._state == PlayerState.PLAYING:
            position = self._position + (self._clock() - self._anchor)
            if self.duration is not None:
                return min(position, self.duration)
            return position
        return self._position

    def state(self) -> PlayerState:
        if (self._state == PlayerState.PLAYING and self.duration is not None
                and self.current_time() >= self.duration):
            self._set_state(PlayerState.ENDED)
        return self._state

    def seek(self, seconds: float):
        self.commands.append(("seek", seconds))
        resume = self._state
        self._position = max(0.0, seconds)
        self._anchor = self._clock()
        if resume == PlayerState.PLAYING:
            self._set_state(PlayerState.BUFFERING)
            self._set_state(PlayerState.PLAYING)

    def play(self):
        self.commands.append(("play",))
        self._set_state(PlayerState.PLAYING)

    def pause(self):
        self.commands.append(("pause",))
        self._set_state(PlayerState.PAUSED)

    def load(self, media_id: str, start: float = 0.0):
        self.commands.append(("load", media_id, start))
        self.media_id = media_id
        self._position = max(0.0, start)
        self._anchor = self._clock()
        self._set_state(PlayerState.BUFFERING)

    # Simulated user interaction, reported like any other state change

    def user_play(self):
        self._set_state(PlayerState.PLAYING)

    def user_pause(self):
        self._set_state(PlayerState.PAUSED)

    def user_seek(self, seconds: float):
        self._position = max(0.0, seconds)
        self._anchor = self._clock()
        # Browsers report a scrub as buffering even though the play intent is kept
        if self.on_state_change:
            self.on_state_change(PlayerState.BUFFERING)
