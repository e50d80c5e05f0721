from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator

import pytest

from aiomediasync.config import ServerSettings
from aiomediasync.server.connections import Connection
from aiomediasync.server.server import MediaSyncServer

T0 = 1_700_000_000_000


class FakeClock:
    """Manually advanced wall clock in ms since epoch."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def server(clock: FakeClock) -> Iterator[MediaSyncServer]:
    loop = asyncio.new_event_loop()
    try:
        yield MediaSyncServer(loop, ServerSettings(_env_file=None), clock=clock)
    finally:
        loop.close()


@pytest.fixture
def attach(server: MediaSyncServer) -> Callable[..., Connection]:
    """Register a transportless connection the way an accepted client is registered."""

    def _attach(token: str, **identity: str) -> Connection:
        connection = Connection(token, connected_at=server.clock(), **identity)
        server.connections.add(connection)
        server.dispatcher.resume_token_media(connection)
        server.dispatcher.apply_region_for_client(token)
        return connection

    return _attach
