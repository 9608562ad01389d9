"""Tests for CallbackExecutor."""

from __future__ import annotations

import threading

import pytest

from zkcoord.exceptions import ExecutorNotRunningError
from zkcoord.executor import CallbackExecutor


@pytest.fixture
def executor():
    executor = CallbackExecutor(max_workers=2, thread_name_prefix="test-callback")
    yield executor
    executor.shutdown()


class TestCallbackExecutor:
    """Deferred callback execution."""

    def test_defer_returns_result(self, executor: CallbackExecutor) -> None:
        assert executor.defer(pow, 2, 10).result(timeout=5.0) == 1024

    def test_runs_on_named_worker(self, executor: CallbackExecutor) -> None:
        """Work runs on the pool, flagged as such."""
        name, on_pool = executor.defer(
            lambda: (threading.current_thread().name, executor.on_threadpool())
        ).result(timeout=5.0)

        assert name.startswith("test-callback")
        assert on_pool is True
        assert not executor.on_threadpool()

    def test_exceptions_are_contained_and_reported(self, executor: CallbackExecutor) -> None:
        """A raising callback does not propagate; hooks see the exception."""
        seen: list[BaseException] = []
        executor.on_exception(seen.append)

        def broken() -> None:
            raise RuntimeError("boom")

        assert executor.defer(broken).result(timeout=5.0) is None
        assert len(seen) == 1
        assert isinstance(seen[0], RuntimeError)

    def test_broken_hook_is_contained(self, executor: CallbackExecutor) -> None:
        def bad_hook(exc: BaseException) -> None:
            raise ValueError("hook")

        executor.on_exception(bad_hook)

        assert executor.defer(lambda: 1 / 0).result(timeout=5.0) is None

    def test_defer_after_shutdown_raises(self, executor: CallbackExecutor) -> None:
        executor.shutdown()

        assert not executor.running
        with pytest.raises(ExecutorNotRunningError):
            executor.defer(print)

    def test_shutdown_waits_for_queued_work(self) -> None:
        """shutdown(wait=True) lets already-deferred work finish."""
        executor = CallbackExecutor(max_workers=1)
        done: list[int] = []
        gate = threading.Event()
        executor.defer(gate.wait, 5.0)
        executor.defer(done.append, 1)

        gate.set()
        executor.shutdown(wait=True)

        assert done == [1]

    def test_shutdown_from_worker(self) -> None:
        """A worker may shut its own executor down without deadlocking."""
        executor = CallbackExecutor(max_workers=1)
        executor.defer(executor.shutdown).result(timeout=5.0)
        assert not executor.running

    def test_max_workers_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            CallbackExecutor(max_workers=0)
