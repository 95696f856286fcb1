"""Shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from mcpc.config import SessionConfig
from mcpc.session.session import ClientSession
from tests.fakes import FakeServer


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
async def session(server: FakeServer) -> AsyncIterator[ClientSession]:
    """A ready session with the tool cache populated."""
    session = ClientSession(SessionConfig(request_timeout=2.0), server_name="fake")
    await session.connect(server)
    await session.discover("tools")
    yield session
    await session.close()
