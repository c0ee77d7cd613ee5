"""Pytest configuration and fixtures for chatlink_core tests."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatlink_core.lifecycle import RetryPolicy
from chatlink_core.manager import ConnectionManager
from chatlink_core.session_store import SessionStore


class FakeCapabilityClient:
    """Scriptable capability client; events are pushed with emit()."""

    def __init__(self) -> None:
        self.callback: Any = None
        self.initialize = AsyncMock()
        self.destroy = AsyncMock()
        self.logout = AsyncMock()
        self.request = AsyncMock(return_value=None)

    def on_event(self, callback: Any) -> None:
        self.callback = callback

    def emit(self, event: Any) -> None:
        assert self.callback is not None, "client was never wired"
        self.callback(event)


class ClientFactory:
    """Callable factory that records every client it creates."""

    def __init__(self) -> None:
        self.clients: list[FakeCapabilityClient] = []
        self.on_create: Any = None

    def __call__(self) -> FakeCapabilityClient:
        client = FakeCapabilityClient()
        if self.on_create is not None:
            self.on_create(client)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeCapabilityClient:
        return self.clients[-1]


@pytest.fixture
def client_factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture
def session_store() -> MagicMock:
    """Create a mock SessionStore."""
    store = MagicMock(spec=SessionStore)
    store.erase = AsyncMock()
    store.ensure = AsyncMock()
    return store


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with near-zero delays."""
    return RetryPolicy(
        max_attempts=3,
        auth_failure_delay=0.0,
        init_failure_delay=0.0,
        disconnect_delay=0.01,
        clean_session_delay=0.0,
    )


@pytest.fixture
def slow_policy() -> RetryPolicy:
    """Retry policy whose delays never elapse during a test."""
    return RetryPolicy(
        max_attempts=3,
        auth_failure_delay=30.0,
        init_failure_delay=30.0,
        disconnect_delay=60.0,
        clean_session_delay=30.0,
    )


def create_manager(
    factory: ClientFactory, store: MagicMock, policy: RetryPolicy
) -> ConnectionManager:
    return ConnectionManager(factory, store, policy=policy, client_id="test")


async def settle(manager: ConnectionManager) -> None:
    """Run spawned effects and any due scheduled starts to completion.

    Only use with policies whose delays elapse quickly.
    """
    for _ in range(50):
        await manager.drain()
        scheduled = manager._scheduled
        if scheduled is None:
            await asyncio.sleep(0)
            if not manager._effect_tasks and manager._scheduled is None:
                return
            continue
        await asyncio.wait({scheduled.task})
    raise AssertionError("manager did not settle")
