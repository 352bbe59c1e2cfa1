import asyncio
from types import SimpleNamespace

import pytest


class FakeSessionManager:
    """In-memory stand-in for SessionManager; sessions are plain namespaces."""

    def __init__(self, open_delay: float = 0.0, fail_open: int = 0):
        self.open_delay = open_delay
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0
        self.close_calls = 0
        self.double_closed: list[int] = []
        self.live: set[int] = set()
        self.max_live = 0
        self.shutdown_called = False

    @property
    def open_sessions(self) -> int:
        return len(self.live)

    async def open(self, config=None):
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_open:
            self.fail_open -= 1
            raise RuntimeError("browser unavailable")
        self.opened += 1
        session = SimpleNamespace(session_id=self.opened, config=config, page=None, closed=False)
        self.live.add(session.session_id)
        self.max_live = max(self.max_live, len(self.live))
        return session

    async def close(self, session):
        self.close_calls += 1
        if session.closed:
            self.double_closed.append(session.session_id)
            return
        session.closed = True
        self.closed += 1
        self.live.discard(session.session_id)

    async def shutdown(self):
        self.shutdown_called = True


@pytest.fixture
def session_manager():
    return FakeSessionManager()


@pytest.fixture
def session_manager_factory():
    return FakeSessionManager
