"""Tests for SharedLocker and its interplay with ExclusiveLocker."""

from __future__ import annotations

import threading

import pytest

from zkcoord.client import CoordinationClient
from zkcoord.exceptions import LockWaitTimeoutError
from zkcoord.locker import SharedLocker
from tests.helpers import BackgroundCall, wait_until

ROOT = "/_zklocking/inventory"


class TestSharedLocker:
    """Readers and writers on one resource."""

    def test_readers_share(self, client: CoordinationClient, client2: CoordinationClient) -> None:
        """Any number of shared holders coexist."""
        first = client.shared_locker("inventory")
        second = client2.shared_locker("inventory")

        assert first.lock() is True
        assert second.lock() is True

        assert first.lock_basename == "sh0000000000"
        assert second.lock_basename == "sh0000000001"
        first.unlock()
        second.unlock()

    def test_reader_blocks_writer(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """An exclusive candidate waits for a lower shared holder."""
        reader = client.shared_locker("inventory")
        writer = client2.exclusive_locker("inventory")
        reader.lock()

        assert writer.lock() is False
        assert not writer.acquirable()

        call = BackgroundCall(writer.lock, 5.0)
        assert writer.wait_until_blocked(timeout=5.0)
        reader.unlock()

        assert call.join() is True
        writer.unlock()

    def test_writer_blocks_reader_until_released(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """A blocked reader flips to locked once the lower writer goes."""
        writer = client.exclusive_locker("inventory")
        reader = client2.shared_locker("inventory")
        writer.lock()

        assert not reader.acquirable()
        call = BackgroundCall(reader.lock, 5.0)
        assert reader.wait_until_blocked(timeout=5.0)
        assert not reader.locked

        writer.unlock()

        assert call.join() is True
        assert reader.locked
        reader.unlock()

    def test_waiting_writer_blocks_later_readers(
        self,
        client: CoordinationClient,
        client2: CoordinationClient,
        client3: CoordinationClient,
    ) -> None:
        """Readers arriving after a queued writer wait behind it."""
        early_reader = client.shared_locker("inventory")
        writer = client2.exclusive_locker("inventory")
        late_reader = client3.shared_locker("inventory")
        early_reader.lock()

        writer_call = BackgroundCall(writer.lock, 5.0)
        assert writer.wait_until_blocked(timeout=5.0)

        assert late_reader.lock() is False

        early_reader.unlock()
        assert writer_call.join() is True
        writer.unlock()

    def test_higher_writer_does_not_affect_holder(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """Only lower exclusive candidates count against a reader."""
        reader = client.shared_locker("inventory")
        reader.lock()

        with pytest.raises(LockWaitTimeoutError):
            client2.exclusive_locker("inventory").lock(wait=0.1)

        reader.assert_locked()
        reader.unlock()

    def test_acquirable_without_resource(self, client: CoordinationClient) -> None:
        """A resource nobody has touched is acquirable."""
        assert client.shared_locker("inventory").acquirable()

    def test_acquirable_with_only_readers(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """Shared candidates do not make a resource unacquirable for readers."""
        client.shared_locker("inventory").lock()

        assert client2.shared_locker("inventory").acquirable()
        assert not client2.exclusive_locker("inventory").acquirable()

    def test_readers_and_writers_never_overlap(self, make_client) -> None:
        """Writers are alone; readers only overlap other readers."""
        readers = 0
        writers = 0
        violations: list[str] = []
        state_lock = threading.Lock()

        def read(locker: SharedLocker) -> None:
            nonlocal readers
            for _ in range(4):
                with locker.with_lock(wait=10.0):
                    with state_lock:
                        readers += 1
                        if writers:
                            violations.append("reader overlapped a writer")
                    with state_lock:
                        readers -= 1

        def write(locker) -> None:
            nonlocal writers
            for _ in range(4):
                with locker.with_lock(wait=10.0):
                    with state_lock:
                        writers += 1
                        if writers > 1 or readers:
                            violations.append("writer was not alone")
                    with state_lock:
                        writers -= 1

        calls = [BackgroundCall(read, make_client().shared_locker("inventory")) for _ in range(3)]
        calls += [BackgroundCall(write, make_client().exclusive_locker("inventory")) for _ in range(2)]
        for call in calls:
            call.join(timeout=30.0)

        assert violations == []

    def test_children_ordered_by_sequence_not_prefix(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """'sh' sorts after 'ex' lexically, but sequence numbers decide."""
        reader = client.shared_locker("inventory")
        writer = client2.exclusive_locker("inventory")
        reader.lock()
        assert writer.lock() is False
        writer_call = BackgroundCall(writer.lock, 5.0)
        assert writer.wait_until_blocked(timeout=5.0)

        assert reader._ordered_lock_children() == ["sh0000000000", writer.lock_basename]
        assert wait_until(lambda: writer.waiting)

        reader.unlock()
        assert writer_call.join() is True
        writer.unlock()
