"""Thread pool that runs watch callbacks off the delivery thread.

Connections deliver events on a single thread. Anything slow (user
callbacks, follow-up reads that re-arm watches) is handed to this
executor so one misbehaving subscriber cannot stall delivery to the rest.

Example:
    executor = CallbackExecutor(max_workers=5)
    executor.defer(handle_event, event)
    executor.shutdown()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from zkcoord.exceptions import ExecutorNotRunningError

logger = logging.getLogger(__name__)

ErrorHook = Callable[[BaseException], None]


class CallbackExecutor:
    """Runs deferred callables on a fixed-size pool of worker threads.

    Exceptions raised by deferred work are logged and passed to any
    registered error hooks; they never reach the thread that deferred it.

    Args:
        max_workers: Number of worker threads (at least 1)
        thread_name_prefix: Prefix for worker thread names
    """

    def __init__(self, max_workers: int = 5, thread_name_prefix: str = "zkcoord-callback"):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, not {max_workers}")

        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._local = threading.local()
        self._lock = threading.Lock()
        self._running = True
        self._error_hooks: list[ErrorHook] = []

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def on_exception(self, hook: ErrorHook) -> None:
        """Register a hook called with every exception raised by deferred work."""
        with self._lock:
            self._error_hooks.append(hook)

    def on_threadpool(self) -> bool:
        """True if the caller is running on one of our worker threads."""
        return getattr(self._local, "active", False)

    def defer(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """Schedule fn(*args, **kwargs) on the pool.

        Raises:
            ExecutorNotRunningError: if the executor has been shut down
        """
        with self._lock:
            if not self._running:
                raise ExecutorNotRunningError("callback executor is not running")
            try:
                return self._pool.submit(self._run, fn, args, kwargs)
            except RuntimeError as exc:
                raise ExecutorNotRunningError(str(exc)) from exc

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for queued work to finish.

        Safe to call from a worker thread (it will not wait on itself).
        """
        with self._lock:
            if not self._running:
                return
            self._running = False

        self._pool.shutdown(wait=wait and not self.on_threadpool())

    def _run(self, fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        self._local.active = True
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            logger.exception("Error in deferred callback %r", fn)
            for hook in list(self._error_hooks):
                try:
                    hook(exc)
                except Exception:
                    logger.exception("Error in executor exception hook")
            return None
        finally:
            self._local.active = False
