"""Global pytest configuration and fixtures.

Unit tests run against an InMemoryEnsemble. Every client built by
make_client is a separate session on the same ensemble, so several
clients behave like several processes talking to one ZooKeeper.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest

from zkcoord.client import CoordinationClient, InMemoryEnsemble
from zkcoord.config import Settings
from zkcoord.observability.metrics import MetricsRegistry


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: needs Docker and a ZooKeeper container")


@pytest.fixture
def settings() -> Settings:
    """Settings with the default roots and a small callback pool."""
    return Settings(callback_workers=4, enable_metrics=False)


@pytest.fixture
def ensemble() -> InMemoryEnsemble:
    """A fresh in-memory coordination namespace."""
    return InMemoryEnsemble()


@pytest.fixture
def make_client(
    ensemble: InMemoryEnsemble, settings: Settings
) -> Iterator[Callable[[], CoordinationClient]]:
    """Factory for clients on the shared ensemble; all are closed afterwards."""
    clients: list[CoordinationClient] = []

    def factory() -> CoordinationClient:
        client = CoordinationClient(ensemble.connect(), settings=settings, metrics=MetricsRegistry())
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()


@pytest.fixture
def client(make_client: Callable[[], CoordinationClient]) -> CoordinationClient:
    return make_client()


@pytest.fixture
def client2(make_client: Callable[[], CoordinationClient]) -> CoordinationClient:
    return make_client()


@pytest.fixture
def client3(make_client: Callable[[], CoordinationClient]) -> CoordinationClient:
    return make_client()
