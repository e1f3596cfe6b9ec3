"""Shared pytest fixtures for room tests."""

from __future__ import annotations

from typing import Callable, List

import pytest

from app.models.user import VerifiedCredential
from app.services.privilege import PrivilegeAuthority
from app.services.queue import QueueManager
from app.services.router import EventRouter
from app.services.scheduler import Scheduler
from app.services.session import SessionStore
from app.services.transport import Transport

START_TIME = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingTransport(Transport):
    """Keeps every emission instead of sending it."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.disconnected: List[str] = []
        self.on_disconnect = None

    async def emit(self, event, data=None, to=None):
        self.sent.append({"event": event, "data": data, "to": to})

    async def disconnect(self, sid):
        self.disconnected.append(sid)
        if self.on_disconnect is not None:
            await self.on_disconnect(sid)

    def events(self, event=None, to=None, broadcast=None) -> List[dict]:
        result = []
        for item in self.sent:
            if event is not None and item["event"] != event:
                continue
            if to is not None and item["to"] != to:
                continue
            if broadcast is not None and (item["to"] is None) != broadcast:
                continue
            result.append(item)
        return result

    def names(self) -> List[str]:
        return [item["event"] for item in self.sent]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(media_id="initial-id", clock=clock)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_router(store: SessionStore, transport: RecordingTransport) -> Callable[..., EventRouter]:
    """Router with immediate timers unless a test overrides them."""

    def factory(**overrides) -> EventRouter:
        options = dict(
            initial_sync_delay=0,
            controller_sync_delay=0,
            seek_resync_delay=0,
            teardown_delay=0,
            play_debounce=0.1,
        )
        limits = dict(max_connections=3, admin_limit=1, regular_limit=2)
        for key in list(limits):
            if key in overrides:
                limits[key] = overrides.pop(key)
        options.update(overrides)
        authority = PrivilegeAuthority(store, **limits)
        router = EventRouter(store, authority, QueueManager(store), transport, Scheduler(), **options)
        transport.on_disconnect = router.disconnect
        return router

    return factory


@pytest.fixture
def router(make_router) -> EventRouter:
    return make_router()


async def join(router: EventRouter, sid: str, identity: str, admin: bool = False):
    participant = await router.connect(
        sid, VerifiedCredential(identity=identity, is_controller_eligible=admin)
    )
    await router.scheduler.drain()
    return participant
