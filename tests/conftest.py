"""Shared pytest fixtures for the realtime client tests."""

from __future__ import annotations

from typing import Callable

import pytest

from fakes import FakeMarketplace
from mentorlink.api import BackendClient
from mentorlink.config import Settings
from mentorlink.monitoring.registry import registry
from mentorlink.realtime import ConnectionBroker
from mentorlink.session import SessionContext


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> None:
    for metric in registry._metrics.values():
        metric._samples.clear()
    yield
    for metric in registry._metrics.values():
        metric._samples.clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        backend_url="http://testserver",
        typing_debounce_seconds=0.05,
        call_setup_timeout_seconds=5.0,
        call_duration_tick_seconds=0.05,
        _env_file=None,
    )


@pytest.fixture()
def marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture()
def make_session(settings: Settings) -> Callable[[str], SessionContext]:
    def factory(user_id: str) -> SessionContext:
        return SessionContext(user_id=user_id, token=f"token-{user_id}", settings=settings)

    return factory


@pytest.fixture()
def make_client(marketplace: FakeMarketplace, make_session) -> Callable[[str], BackendClient]:
    def factory(user_id: str) -> BackendClient:
        return BackendClient(make_session(user_id), transport=marketplace.transport())

    return factory


@pytest.fixture()
def make_broker(marketplace: FakeMarketplace, make_session) -> Callable[[str], ConnectionBroker]:
    def factory(user_id: str) -> ConnectionBroker:
        return ConnectionBroker(make_session(user_id), connector=marketplace.connector)

    return factory
