"""Integration test fixtures using Docker.

Provides a containerized ZooKeeper server and CoordinationClients
connected to it through kazoo.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator

import pytest

from zkcoord.client import CoordinationClient, KazooConnection
from zkcoord.config import Settings
from zkcoord.observability.metrics import MetricsRegistry
from tests.integration.docker_utils import zookeeper_server


def pytest_collection_modifyitems(items):
    """Everything in this directory needs Docker."""
    for item in items:
        if "tests/integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        import docker

        client = docker.from_env()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def zk_hosts(docker_client) -> Iterator[str]:
    """Connection string for a ZooKeeper started for the test session."""
    with zookeeper_server(docker_client) as hosts:
        yield hosts


@pytest.fixture
def zk_settings(zk_hosts: str) -> Settings:
    """Settings with roots unique to this test."""
    base = f"/zkcoord-test-{uuid.uuid4().hex[:8]}"
    return Settings(
        hosts=zk_hosts,
        session_timeout=10.0,
        lock_root=f"{base}/locks",
        semaphore_root=f"{base}/semaphores",
        election_root=f"{base}/elections",
        callback_workers=4,
        enable_metrics=False,
    )


@pytest.fixture
def make_zk_client(zk_settings: Settings) -> Iterator[Callable[[], CoordinationClient]]:
    """Factory for clients with their own ZooKeeper sessions."""
    clients: list[CoordinationClient] = []

    def factory() -> CoordinationClient:
        connection = KazooConnection(zk_settings.hosts, session_timeout=zk_settings.session_timeout)
        connection.start(timeout=zk_settings.connect_timeout)
        client = CoordinationClient(connection, settings=zk_settings, metrics=MetricsRegistry())
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
