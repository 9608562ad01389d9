"""Tests for lock metrics recording."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from zkcoord.client import CoordinationClient, InMemoryEnsemble
from zkcoord.config import Settings
from zkcoord.exceptions import LockWaitTimeoutError


@pytest.fixture
def metrics() -> MagicMock:
    return MagicMock()


@pytest.fixture
def metered_client(ensemble: InMemoryEnsemble, settings: Settings, metrics: MagicMock):
    client = CoordinationClient(ensemble.connect(), settings=settings, metrics=metrics)
    yield client
    client.close()


class TestLockerMetrics:
    """lock() records attempts and wait time."""

    def test_acquired(self, metered_client: CoordinationClient, metrics: MagicMock) -> None:
        """A successful try-lock counts as acquired and records no wait."""
        metered_client.exclusive_locker("jobs").lock()

        metrics.lock_acquisitions_total.labels.assert_called_once_with(
            kind="exclusive", result="acquired"
        )
        metrics.lock_acquisitions_total.labels.return_value.inc.assert_called_once()
        metrics.lock_wait_seconds.labels.assert_not_called()

    def test_busy(
        self,
        metered_client: CoordinationClient,
        client: CoordinationClient,
        metrics: MagicMock,
    ) -> None:
        """A failed try-lock counts as busy."""
        client.shared_locker("jobs").lock()
        client.exclusive_locker("jobs").lock()

        assert metered_client.shared_locker("jobs").lock() is False

        metrics.lock_acquisitions_total.labels.assert_called_once_with(kind="shared", result="busy")

    def test_timeout_records_wait(
        self,
        metered_client: CoordinationClient,
        client: CoordinationClient,
        metrics: MagicMock,
    ) -> None:
        """A timed-out blocking lock counts as timeout and observes the wait."""
        client.semaphore("pool", 1).lock()

        with pytest.raises(LockWaitTimeoutError):
            metered_client.semaphore("pool", 1).lock(wait=0.05)

        assert metrics.lock_acquisitions_total.labels.call_args == call(
            kind="semaphore", result="timeout"
        )
        metrics.lock_wait_seconds.labels.assert_called_once_with(kind="semaphore")
        (elapsed,), _ = metrics.lock_wait_seconds.labels.return_value.observe.call_args
        assert elapsed > 0
