"""
Authority rules for playback events.

Each function looks at the current playback state, who sent the event and
whether a controller is connected, and says what the router should do.
They never touch the store; the router applies the outcome.
"""
from enum import Enum

from app.models.room import PlaybackState, Role


class Outcome(str, Enum):
    # Accepted; broadcast to everyone, force-applied by receivers
    ACCEPT_FORCED = "accept_forced"
    # Accepted; broadcast to everyone
    ACCEPT = "accept"
    # Accepted; broadcast subject to the play debounce window
    ACCEPT_THROTTLED = "accept_throttled"
    # Refused; tell the sender to pause at the authoritative position
    REJECT_WITH_PAUSE = "reject_with_pause"
    # Refused; send the sender the authoritative snapshot
    OVERRIDE_WITH_SNAPSHOT = "override_with_snapshot"
    # Refused; sender may seek locally, snapshot follows after a delay
    TEMPORARY_SEEK = "temporary_seek"


def decide_play(state: PlaybackState, role: Role) -> Outcome:
    if role == Role.CONTROLLER:
        return Outcome.ACCEPT_FORCED
    if not state.controller_has_started_playback:
        return Outcome.REJECT_WITH_PAUSE
    return Outcome.ACCEPT_THROTTLED


def has_playback_authority(role: Role, controller_present: bool) -> bool:
    return role == Role.CONTROLLER or not controller_present


def decide_pause(role: Role, controller_present: bool) -> Outcome:
    if has_playback_authority(role, controller_present):
        return Outcome.ACCEPT
    return Outcome.OVERRIDE_WITH_SNAPSHOT


def decide_seek(role: Role, controller_present: bool) -> Outcome:
    if has_playback_authority(role, controller_present):
        return Outcome.ACCEPT
    return Outcome.TEMPORARY_SEEK


def apply_play(state: PlaybackState, time: float, by_controller: bool):
    state.is_playing = True
    state.position_seconds = time
    if by_controller:
        state.controller_has_started_playback = True


def apply_pause(state: PlaybackState, time: float):
    state.is_playing = False
    state.position_seconds = time


def apply_seek(state: PlaybackState, time: float):
    state.position_seconds = time


def apply_change_media(state: PlaybackState, media_id: str, autoplay: bool = False):
    state.media_id = media_id
    state.position_seconds = 0.0
    state.is_playing = autoplay
    state.controller_has_started_playback = False
