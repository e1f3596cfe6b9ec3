import time
from typing import Callable, Dict, List, Optional

from app.models.room import (
    Occupancy,
    Participant,
    PlaybackState,
    QueueEntry,
    Role,
    Snapshot,
)


class SessionStore:
    """
    Authoritative state for one room: playback, participants and queue.

    Only the event router writes playback state (through apply_mutation) and
    only the queue manager writes the queue. Everything else reads snapshots.
    """

    def __init__(self, media_id: str, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._playback = PlaybackState(media_id=media_id, last_update_timestamp=clock())
        self._participants: Dict[str, Participant] = {}
        self.queue: List[QueueEntry] = []
        self.controller_id: Optional[str] = None
        self.controller_identity: Optional[str] = None
        self.controller_has_ever_joined = False

    def now(self) -> float:
        return self._clock()

    # Playback

    @property
    def playback(self) -> PlaybackState:
        return self._playback.model_copy()

    def compute_extrapolated_position(self) -> float:
        state = self._playback
        if state.is_playing:
            return state.position_seconds + (self._clock() - state.last_update_timestamp)
        return state.position_seconds

    def apply_mutation(self, fn: Callable[[PlaybackState], None]) -> PlaybackState:
        fn(self._playback)
        self._playback.last_update_timestamp = self._clock()
        return self.playback

    def resync(self) -> PlaybackState:
        """Fold elapsed play time into the stored position."""
        position = self.compute_extrapolated_position()

        def _fold(state: PlaybackState):
            state.position_seconds = position

        return self.apply_mutation(_fold)

    def snapshot(self, for_sid: Optional[str] = None, force: bool = False) -> Snapshot:
        state = self._playback
        return Snapshot(
            media_id=state.media_id,
            position_seconds=self.compute_extrapolated_position(),
            is_playing=state.is_playing,
            last_update_timestamp=state.last_update_timestamp,
            controller_has_started_playback=state.controller_has_started_playback,
            controller_id=self.controller_id,
            is_controller=for_sid is not None and for_sid == self.controller_id,
            queue=[entry.model_copy() for entry in self.queue],
            force=force,
            server_timestamp=self._clock(),
        )

    # Participants

    def add_participant(self, participant: Participant) -> Participant:
        self._participants[participant.connection_id] = participant
        if participant.role == Role.CONTROLLER:
            self.controller_id = participant.connection_id
        return participant

    def remove_participant(self, sid: str) -> Optional[Participant]:
        participant = self._participants.pop(sid, None)
        if participant and self.controller_id == sid:
            self.controller_id = None
            self.controller_identity = None
        return participant

    def get_participant(self, sid: str) -> Optional[Participant]:
        return self._participants.get(sid)

    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    def display_name(self, sid: str, fallback: str = "Someone") -> str:
        participant = self._participants.get(sid)
        return participant.display_name if participant else fallback

    @property
    def controller_present(self) -> bool:
        return self.controller_id is not None

    def occupancy(self) -> Occupancy:
        controllers = sum(1 for p in self._participants.values() if p.role == Role.CONTROLLER)
        return Occupancy(
            total=len(self._participants),
            controllers=controllers,
            regulars=len(self._participants) - controllers,
            controller_has_ever_joined=self.controller_has_ever_joined,
        )

    def roster(self) -> dict:
        participants = [
            {
                "id": p.connection_id,
                "display_name": p.display_name,
                "is_controller": p.is_controller,
                "joined_at": p.joined_at,
            }
            for p in sorted(self._participants.values(), key=lambda p: p.joined_at)
            if p.connection_id and p.display_name
        ]
        return {
            "count": len(participants),
            "participants": participants,
            "controller_id": self.controller_id,
            "controller_identity": self.controller_identity,
        }
