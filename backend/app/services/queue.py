from typing import List, Optional

from app.models.room import QueueEntry
from app.services.session import SessionStore

THUMBNAIL_TEMPLATE = "https://img.youtube.com/vi/{media_id}/mqdefault.jpg"


def default_thumbnail(media_id: str) -> str:
    return THUMBNAIL_TEMPLATE.format(media_id=media_id)


def _valid_index(index, length: int) -> bool:
    # bool is an int subclass; reject it along with floats and strings
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < length


class QueueManager:
    """
    Ordered playlist curated by the room.

    Mutations return the full resulting sequence, or None when nothing
    changed (bad index, empty queue) so the caller can skip the broadcast.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    @property
    def entries(self) -> List[QueueEntry]:
        return self.store.queue

    def as_payload(self) -> List[dict]:
        return [entry.model_dump() for entry in self.store.queue]

    def add(self, entry: QueueEntry) -> List[QueueEntry]:
        if not entry.thumbnail_ref:
            entry.thumbnail_ref = default_thumbnail(entry.media_id)
        self.store.queue.append(entry)
        return list(self.store.queue)

    def remove(self, index) -> Optional[List[QueueEntry]]:
        if not _valid_index(index, len(self.store.queue)):
            return None
        del self.store.queue[index]
        return list(self.store.queue)

    def reorder(self, old_index, new_index) -> Optional[List[QueueEntry]]:
        length = len(self.store.queue)
        if not (_valid_index(old_index, length) and _valid_index(new_index, length)):
            return None
        if old_index == new_index:
            return None
        moved = self.store.queue.pop(old_index)
        self.store.queue.insert(new_index, moved)
        return list(self.store.queue)

    def pop_next(self) -> Optional[QueueEntry]:
        if not self.store.queue:
            return None
        return self.store.queue.pop(0)
